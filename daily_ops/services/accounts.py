"""
Account Service

Registration, login and token authentication on top of the storage
engine (users collection) and the session manager.

Failures that a client could use to probe for accounts (unknown user,
wrong password, expired or forged token) all look the same from outside.
"""

import asyncio
import hmac
from functools import lru_cache
from typing import Optional

from daily_ops.audit import AuditLogger
from daily_ops.models.records import PasswordCredential, User
from daily_ops.models.session import Session
from daily_ops.services.credentials import (
    hash_password,
    validate_password_strength,
    verify_password,
)
from daily_ops.services.sessions import SessionManager
from daily_ops.services.storage import StorageEngine


class AccountError(Exception):
    """Base exception for account operations."""
    pass


class AuthenticationError(AccountError):
    """Credentials or session token were not accepted."""
    pass


class WeakPasswordError(AccountError):
    """Password does not meet the strength policy."""
    pass


class SetupTokenError(AccountError):
    """The first account needs the configured setup token."""
    pass


class RegistrationClosedError(AccountError):
    """An account already exists and open registration is disabled."""
    pass


@lru_cache(maxsize=1)
def _dummy_credential() -> PasswordCredential:
    # Spends the same scrypt work for unknown usernames as for known ones.
    return hash_password("daily-ops-dummy-password!1")


class AccountService:
    """
    Accounts and logins.

    Args:
        storage: Engine holding the users collection
        sessions: Session manager issuing tokens
        setup_token: Required to create the first account, when set
        allow_registration: Whether accounts beyond the first may be created
    """

    def __init__(
        self,
        storage: StorageEngine,
        sessions: SessionManager,
        setup_token: Optional[str] = None,
        allow_registration: bool = False,
        audit: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._sessions = sessions
        self._setup_token = setup_token
        self._allow_registration = allow_registration
        self._audit = audit or AuditLogger()

    @property
    def needs_setup(self) -> bool:
        """True until the first account exists."""
        return not self._storage.users.list()

    def _check_setup_token(self, provided: Optional[str]) -> None:
        if self._setup_token is None:
            return
        if provided is None or not hmac.compare_digest(
            provided.encode("utf-8"), self._setup_token.encode("utf-8")
        ):
            raise SetupTokenError("A valid setup token is required to create the first account.")

    async def register(
        self,
        username: str,
        password: str,
        setup_token: Optional[str] = None,
    ) -> User:
        """
        Create an account.

        Raises:
            SetupTokenError: First account without the configured setup token
            RegistrationClosedError: Not the first account and registration is closed
            WeakPasswordError: Password fails the strength policy
            DuplicateError: Username already taken
            PersistenceError: Account kept in memory but not written to disk
        """
        username = (username or "").strip()
        if not username:
            raise ValueError("username is required")

        if self.needs_setup:
            self._check_setup_token(setup_token)
        elif not self._allow_registration:
            raise RegistrationClosedError("Registration is closed.")

        check = validate_password_strength(password)
        if not check.valid:
            raise WeakPasswordError(check.message)

        credential = await asyncio.to_thread(hash_password, password)
        user = User(username=username, password=credential)
        stored = await self._storage.users.add(user)
        self._audit.user_registered(stored.id, stored.username)
        return stored

    async def login(self, username: str, password: str) -> Session:
        """
        Exchange credentials for a new session.

        Raises:
            AuthenticationError: Unknown user or wrong password
        """
        user = self._storage.users.get_by_username((username or "").strip())
        if user is not None:
            credential = user.password
        else:
            credential = await asyncio.to_thread(_dummy_credential)
        password_ok = await asyncio.to_thread(verify_password, password or "", credential)

        if user is None or not password_ok:
            self._audit.login_failed(username)
            raise AuthenticationError("Invalid username or password.")
        return self._sessions.create_session(user.id)

    def authenticate(self, token: Optional[str]) -> Optional[User]:
        """
        Resolve a bearer token to its user.

        Returns None for empty, unknown, expired or forged tokens, and for
        sessions whose user no longer exists (that session is destroyed).
        """
        session = self._sessions.get_session(token)
        if session is None:
            return None
        user = self._storage.users.get(session.user_id)
        if user is None:
            self._sessions.destroy_session(token)
            return None
        return user

    def require_user(self, token: Optional[str]) -> User:
        """Like authenticate() but raises AuthenticationError."""
        user = self.authenticate(token)
        if user is None:
            raise AuthenticationError("Not authenticated.")
        return user

    def logout(self, token: Optional[str]) -> None:
        self._sessions.destroy_session(token)
