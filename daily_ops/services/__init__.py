"""Services package."""

from daily_ops.services.storage import (
    CorruptStoreError,
    DecryptionError,
    DuplicateError,
    NotFoundError,
    PersistenceError,
    StorageEngine,
    StorageError,
)
from daily_ops.services.sessions import SessionManager
from daily_ops.services.credentials import (
    PasswordCheck,
    hash_password,
    validate_password_strength,
    verify_password,
)
from daily_ops.services.accounts import (
    AccountError,
    AccountService,
    AuthenticationError,
    RegistrationClosedError,
    SetupTokenError,
    WeakPasswordError,
)

__all__ = [
    # Storage
    "CorruptStoreError",
    "DecryptionError",
    "DuplicateError",
    "NotFoundError",
    "PersistenceError",
    "StorageEngine",
    "StorageError",
    # Sessions
    "SessionManager",
    # Credentials
    "PasswordCheck",
    "hash_password",
    "validate_password_strength",
    "verify_password",
    # Accounts
    "AccountError",
    "AccountService",
    "AuthenticationError",
    "RegistrationClosedError",
    "SetupTokenError",
    "WeakPasswordError",
]
