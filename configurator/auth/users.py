"""User accounts: password login and TOTP second factor.

Passwords are stored as hex scrypt digests (N=16384, r=8, p=1, 32 bytes) with
a per-user salt. TOTP secrets are base32 strings; users without one cannot
complete the second factor and therefore cannot cancel orders.
"""

import hashlib
import hmac
import secrets
from typing import Optional

import pyotp
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select

from configurator.db.database import Database
from configurator.db.tables import UserRow
from configurator.utils.config import config
from configurator.utils.logger import logger


SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_KEY_LENGTH = 32


class AuthenticationError(Exception):
    """Login or second-factor verification failed."""


class User(BaseModel):
    """Authenticated user, as kept in the session."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    name: Optional[str] = None
    secret: Optional[str] = None

    @property
    def can_do_totp(self) -> bool:
        return bool(self.secret)


def hash_password(password: str, salt: str) -> str:
    """Hex scrypt digest of a password with the given salt string."""
    digest = hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=SCRYPT_KEY_LENGTH,
    )
    return digest.hex()


def new_salt() -> str:
    return secrets.token_hex(8)


def verify_totp(secret: Optional[str], code: str) -> bool:
    """Check a 6-digit code against a base32 secret, allowing TOTP_VALID_WINDOW steps of drift."""
    if not secret:
        return False
    totp = pyotp.TOTP(secret.replace(" ", ""))
    return totp.verify(code, valid_window=config.TOTP_VALID_WINDOW)


def _user(row: UserRow) -> User:
    return User(id=row.id, username=row.email, name=row.name, secret=row.secret or None)


class UserStore:
    """DAO for the users table."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def get_user(self, user_id: int) -> Optional[User]:
        with self.database.session_scope() as session:
            row = session.get(UserRow, user_id)
            return _user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.database.session_scope() as session:
            row = session.scalars(select(UserRow).where(UserRow.email == email)).first()
            return _user(row) if row is not None else None

    def authenticate(self, email: str, password: str) -> User:
        """Verify credentials.

        Raises:
            AuthenticationError: If the email is unknown or the password is wrong.
        """
        with self.database.session_scope() as session:
            row = session.scalars(select(UserRow).where(UserRow.email == email)).first()
            if row is None:
                logger.warning(f"Login failed for {email}: unknown user")
                raise AuthenticationError("Incorrect username or password")
            if not hmac.compare_digest(row.hash, hash_password(password, row.salt)):
                logger.warning(f"Login failed for {email}: wrong password", extra={"user_id": row.id})
                raise AuthenticationError("Incorrect username or password")
            user = _user(row)

        logger.info(f"Login succeeded for {email}", extra={"user_id": user.id})
        return user

    def create_user(self, email: str, password: str, name: Optional[str] = None, secret: Optional[str] = None) -> User:
        salt = new_salt()
        with self.database.session_scope() as session:
            row = UserRow(email=email, name=name, hash=hash_password(password, salt), salt=salt, secret=secret)
            session.add(row)
            session.flush()
            return _user(row)
