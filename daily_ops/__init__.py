"""
Daily Ops - Source Package

Core of a single-user-per-account daily planner: tasks, ideas, profit
entries, inbox notes and daily reviews persisted to one encrypted file.

DESIGN PRINCIPLES:
1. One explicit store object per process, never a global
2. Every write reaches disk in the order it was applied in memory
3. Expired or forged session tokens never grant access
4. Dashboard views are pure functions of a snapshot
"""

__version__ = "1.0.0"
__author__ = "Daily Ops Team"
