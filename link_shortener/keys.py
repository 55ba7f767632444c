"""API key store and root key bootstrap.

Keys are opaque ``secrets.token_urlsafe`` strings sent verbatim in the
``Authorization`` header. One key, named ``Root User``, is created from the
``ROOT_USER_KEY`` setting on first startup and can never be changed through
the update/delete operations.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .errors import (
    Conflict,
    NoFieldsToUpdate,
    NotFound,
    RootKeyMissing,
    StoreError,
    Unauthorized,
    ValidationError,
)
from .utils import UNSET, utcnow

ROOT_USER_NAME = "Root User"
MAX_KEY_NAME_LENGTH = 100

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Identity of the caller, resolved from its key on every request."""

    secret_key: str
    is_admin: bool
    key_id: str


class KeyStore:
    """Lookups and admin operations over ``api_keys``."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_key(self, raw: str) -> Optional[models.ApiKey]:
        if not raw:
            return None
        return self.db.query(models.ApiKey).filter_by(key=raw).first()

    def find_by_name(self, name: str) -> Optional[models.ApiKey]:
        return self.db.query(models.ApiKey).filter_by(name=name).first()

    def list_all(self) -> List[models.ApiKey]:
        return self.db.query(models.ApiKey).order_by(models.ApiKey.created_at).all()

    def authenticate(self, raw: Optional[str]) -> AuthContext:
        """Resolve a raw key into an AuthContext.

        Raises:
            Unauthorized: If the key is missing, unknown or inactive
        """
        if not raw:
            raise Unauthorized("Authorization header required")

        try:
            api_key = self.find_by_key(raw)
            if api_key is None:
                raise Unauthorized("invalid secret key")
            if not api_key.is_active:
                raise Unauthorized("secret key is inactive")

            api_key.last_used_at = utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("database error") from e

        return AuthContext(secret_key=api_key.key, is_admin=api_key.is_admin, key_id=api_key.id)

    def create(self, name: str = "", is_admin: bool = False) -> models.ApiKey:
        """Create a key with a fresh random secret.

        An empty name gets a random ``User <suffix>`` placeholder.
        """
        if not name:
            name = "User " + secrets.token_urlsafe(6)
        self._check_name(name)

        api_key = models.ApiKey(
            key=secrets.token_urlsafe(32),
            name=name,
            is_admin=is_admin,
            is_active=True,
        )
        self._insert(api_key)
        logger.info(f"Secret key with name '{name}' created")
        return api_key

    def update(self, key: str, name=UNSET, is_active=UNSET, is_admin=UNSET) -> models.ApiKey:
        """Partially update a key; fields left as UNSET are untouched.

        Raises:
            ValidationError: If ``key`` is empty or a new name is invalid
            NotFound: If the key doesn't exist
            Unauthorized: If the key is the root key
            NoFieldsToUpdate: If nothing would change
            Conflict: If the new name is taken
        """
        api_key = self._get_mutable(key)

        if name is not UNSET and not name:
            raise ValidationError("key name required")

        changes = {}
        if name is not UNSET and name != api_key.name:
            self._check_name(name)
            changes["name"] = name
        if is_active is not UNSET and is_active != api_key.is_active:
            changes["is_active"] = is_active
        if is_admin is not UNSET and is_admin != api_key.is_admin:
            changes["is_admin"] = is_admin

        if not changes:
            raise NoFieldsToUpdate("no fields to update")

        for field, value in changes.items():
            setattr(api_key, field, value)

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict("key name already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("failed to update key") from e

        self.db.refresh(api_key)
        logger.info(f"Secret key '{api_key.name}' updated: {sorted(changes)}")
        return api_key

    def delete(self, key: str) -> None:
        """Delete a key and every link it owns."""
        api_key = self._get_mutable(key)
        try:
            self.db.delete(api_key)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("failed to delete key") from e
        logger.info(f"Secret key '{api_key.name}' deleted")

    def ensure_root_key(self, secret: Optional[str]) -> models.ApiKey:
        """Create the root key from ``secret`` unless one exists already."""
        existing = self.find_by_name(ROOT_USER_NAME)
        if existing is not None:
            return existing

        logger.info("No Root User detected, creating it from configuration")
        if not secret:
            raise RootKeyMissing("ROOT_USER_KEY environment variable is not set")
        if len(secret) > models.KEY_LENGTH:
            raise ValidationError(
                f"ROOT_USER_KEY must be at most {models.KEY_LENGTH} characters"
            )

        root = models.ApiKey(key=secret, name=ROOT_USER_NAME, is_admin=True, is_active=True)
        self._insert(root)
        logger.info("Root User key created")
        return root

    def _get_mutable(self, key: str) -> models.ApiKey:
        if not key:
            raise ValidationError("key required")
        api_key = self.find_by_key(key)
        if api_key is None:
            raise NotFound("key not found")
        if api_key.name == ROOT_USER_NAME:
            raise Unauthorized("cannot update root user key")
        return api_key

    def _check_name(self, name: str) -> None:
        if len(name) > MAX_KEY_NAME_LENGTH:
            raise ValidationError("new key name is too long")
        if name == ROOT_USER_NAME or self.find_by_name(name) is not None:
            raise Conflict("key name already exists")

    def _insert(self, api_key: models.ApiKey) -> None:
        try:
            self.db.add(api_key)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict("key name already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("failed to create new key") from e
        self.db.refresh(api_key)
