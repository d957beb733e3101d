"""Stored credentials for API users.

Users are kept in ``users.xml`` through the same
:class:`~library_xml_api.store.CachedFileStore` as the other collections,
but no schema is registered for them and they are saved without a
validation pass. Passwords are stored as base64-encoded SHA-256 digests.

When the users file is missing or empty a default ``admin`` account
(password ``admin123``, role ``Admin``) is created so a fresh data root
can be logged into. Token issuance is left to the caller.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Optional

from .config import USERS_FILE
from .errors import ArgumentError, BusinessRuleError
from .models import User, Users
from .store import CachedFileStore

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin123"


def hash_password(password: str) -> str:
    digest = hashlib.sha256(password.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    return hmac.compare_digest(hash_password(password), password_hash)


class UserDirectory:
    """Create and authenticate users stored in ``users.xml``.

    Args:
        store: File store holding the users collection.
        seed_default: Create the default admin user when no users exist.
    """

    def __init__(self, store: CachedFileStore, seed_default: bool = True) -> None:
        self.store = store
        if seed_default:
            self._seed_default_users()

    def _users(self) -> Users:
        return self.store.load_or_empty(USERS_FILE, Users)

    def _seed_default_users(self) -> None:
        with self.store.lock(USERS_FILE):
            users = self._users()
            if len(users):
                return
            users.items.append(
                User(
                    id=1,
                    username=DEFAULT_ADMIN_USERNAME,
                    password_hash=hash_password(DEFAULT_ADMIN_PASSWORD),
                    role="Admin",
                )
            )
            self.store.save(users, USERS_FILE)
        logger.info("Created default admin user")

    def get_user(self, username: str) -> Optional[User]:
        """Look up a user by name, ignoring case."""
        wanted = username.lower()
        return next((u for u in self._users() if u.username.lower() == wanted), None)

    def authenticate(self, username: str, password: str) -> Optional[User]:
        """Return the user if the credentials match, else None."""
        if not username or not password:
            return None
        user = self.get_user(username)
        if user is None:
            logger.warning(f"Login attempt failed: user {username} not found")
            return None
        if not verify_password(password, user.password_hash):
            logger.warning(f"Login attempt failed: invalid password for user {username}")
            return None
        return user

    def create_user(self, username: str, password: str, role: str = "User") -> User:
        """Add a user with the next free id.

        Raises:
            ArgumentError: If username or password is empty.
            BusinessRuleError: If the username is taken (case-insensitive).
        """
        if not username or not username.strip() or not password:
            raise ArgumentError("Username and password are required")
        with self.store.lock(USERS_FILE):
            users = self._users()
            if any(u.username.lower() == username.lower() for u in users):
                logger.warning(f"User creation failed: username {username} already exists")
                raise BusinessRuleError(f"Username {username} already exists")
            user = User(id=users.next_id(), username=username, password_hash=hash_password(password), role=role)
            users.items.append(user)
            self.store.save(users, USERS_FILE)
        logger.info(f"Created new user: {username}")
        return user
