"""Business logic service for the link shortener."""

import functools
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .errors import (
    AlreadyTaken,
    Conflict,
    Forbidden,
    GenerationExhausted,
    InvalidFormat,
    InvalidRedirect,
    NotFound,
    StoreError,
    Unauthorized,
    ValidationError,
)
from .keys import AuthContext, KeyStore
from .repository import LinkRepository
from .shortcode import ShortCodeGenerator
from .utils import UNSET, to_naive_utc
from .validators import MAX_SHORTENED_LENGTH, is_alphanumeric, normalize_redirect_url

# Supplying this as expires_at on update clears the expiry
CLEAR_EXPIRY = datetime(1970, 1, 1)


def _classify_store_errors(method):
    """Roll back and re-raise raw SQLAlchemy failures as StoreError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error(f"Store error in {method.__name__}: {e}")
            raise StoreError("database error") from e

    return wrapper


class LinkService:
    """Service layer for link lifecycle business logic."""

    def __init__(
        self,
        db: Session,
        public_site_url: Optional[str] = None,
        max_token_attempts: int = 10,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize link service.

        Args:
            db: Session for this unit of work
            public_site_url: Hostname of this service, used to reject self-redirects
            max_token_attempts: Maximum attempts when generating tokens
            logger: Optional logger
        """
        self.db = db
        self.public_site_url = public_site_url
        self.logger = logger or logging.getLogger(__name__)
        self.links = LinkRepository(db)
        self.keys = KeyStore(db)
        self.generator = ShortCodeGenerator(
            self.links.shortened_exists,
            max_attempts=max_token_attempts,
            logger=self.logger,
        )

    @_classify_store_errors
    def shorten(
        self,
        auth: AuthContext,
        redirect_to: str,
        custom_url: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> str:
        """Create a new link owned by the caller.

        Returns:
            The short token

        Raises:
            ValidationError: If the redirect or custom token is invalid
            AlreadyTaken: If the custom token is in use
            GenerationExhausted: If no free random token was found
        """
        if not redirect_to:
            raise ValidationError("redirect_to is required")
        owner = self._caller_key(auth)
        redirect_url = normalize_redirect_url(redirect_to, self.public_site_url)
        expires_at = to_naive_utc(expires_at)

        if custom_url:
            shortened = self.generator.validate_custom(custom_url)
            self._insert(shortened, redirect_url, expires_at, owner.id)
        else:
            shortened = self._insert_generated(redirect_url, expires_at, owner.id)

        self.logger.info(f"Created link: {shortened} -> {redirect_url}")
        return shortened

    @_classify_store_errors
    def retrieve(self, shortened: str) -> models.Link:
        link = self.links.get_by_shortened(shortened)
        if link is None:
            raise NotFound(f"link '{shortened}' not found")
        return link

    @_classify_store_errors
    def resolve_redirect(
        self,
        shortened: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        referrer: Optional[str] = None,
    ) -> str:
        """Return the target of an active link and record the visit."""
        link = self.links.find_active(shortened)
        if link is None:
            raise NotFound(f"Link with shortened string '{shortened}' not found")
        if not link.redirect_to:
            raise InvalidRedirect("invalid redirect")

        redirect_to = link.redirect_to
        self.links.record_visit(link, user_agent, ip_address, referrer)
        self.logger.debug(f"Resolved {shortened} -> {redirect_to}")
        return redirect_to

    @_classify_store_errors
    def delete(self, auth: AuthContext, shortened: str) -> None:
        link = self.retrieve(shortened)
        self._check_owner(auth, link, "delete")
        self.links.delete(link)
        self.logger.info(f"Deleted link: {shortened}")

    @_classify_store_errors
    def update(
        self,
        auth: AuthContext,
        shortened: str,
        redirect_to=UNSET,
        new_shortened=UNSET,
        expires_at=UNSET,
        is_active=UNSET,
    ) -> models.Link:
        """Apply a partial update; fields left as UNSET keep their value.

        Raises:
            NotFound: If the link doesn't exist
            Unauthorized: If the caller neither owns the link nor is admin
            ValidationError: If a new redirect or token is malformed
            Conflict: If the new token is taken
        """
        link = self.retrieve(shortened)
        self._check_owner(auth, link, "update")

        # Validate everything before touching the row so a rejected update
        # leaves nothing dirty in the session
        changes = {}
        if redirect_to is not UNSET:
            changes["redirect_to"] = normalize_redirect_url(redirect_to, self.public_site_url)

        if new_shortened is not UNSET and new_shortened != link.shortened:
            if not is_alphanumeric(new_shortened or "") or len(new_shortened) > MAX_SHORTENED_LENGTH:
                raise InvalidFormat("New shortened URL must be alphanumeric")
            if not self.generator.is_available(new_shortened):
                raise Conflict("New shortened URL already exists")
            changes["shortened"] = new_shortened

        if expires_at is not UNSET:
            expires_at = to_naive_utc(expires_at)
            changes["expires_at"] = None if expires_at == CLEAR_EXPIRY else expires_at

        if is_active is not UNSET:
            changes["is_active"] = bool(is_active)

        for field, value in changes.items():
            setattr(link, field, value)

        try:
            self.links.save(link)
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict("New shortened URL already exists") from e

        self.logger.info(f"Updated link: {shortened} (now {link.shortened})")
        return link

    @_classify_store_errors
    def retrieve_all(self, auth: AuthContext) -> List[models.Link]:
        if not auth.is_admin:
            raise Forbidden("Forbidden: Admin access required")
        return self.links.list_all()

    @_classify_store_errors
    def retrieve_all_by_key(self, auth: AuthContext, key: str) -> List[models.Link]:
        if not auth.is_admin and key != auth.secret_key:
            raise Unauthorized("Unauthorized to retrieve links for this key")
        owner = self.keys.find_by_key(key)
        if owner is None:
            raise NotFound("key not found")
        return self.links.list_by_owner(owner.id)

    def _caller_key(self, auth: AuthContext) -> models.ApiKey:
        api_key = self.keys.find_by_key(auth.secret_key)
        if api_key is None or not api_key.is_active:
            raise Unauthorized("Unauthorized")
        return api_key

    def _check_owner(self, auth: AuthContext, link: models.Link, action: str) -> None:
        if auth.is_admin:
            return
        caller = self.keys.find_by_key(auth.secret_key)
        if caller is None or caller.id != link.created_by:
            self.logger.warning(f"Rejected {action} of '{link.shortened}' by non-owner")
            raise Unauthorized(f"Unauthorized to {action} this link")

    def _insert(self, shortened, redirect_url, expires_at, owner_id) -> models.Link:
        link = models.Link(
            redirect_to=redirect_url,
            shortened=shortened,
            expires_at=expires_at,
            created_by=owner_id,
            is_active=True,
        )
        try:
            return self.links.create(link)
        except IntegrityError as e:
            # Lost a race on the unique column between the check and the insert
            self.db.rollback()
            raise AlreadyTaken("custom_url is already in use, or is reserved") from e

    def _insert_generated(self, redirect_url, expires_at, owner_id) -> str:
        for _ in range(self.generator.max_attempts):
            shortened = self.generator.generate_unique()
            try:
                self._insert(shortened, redirect_url, expires_at, owner_id)
                return shortened
            except AlreadyTaken:
                self.logger.debug(f"Generated token {shortened} taken on insert, retrying")
        raise GenerationExhausted(
            "failed to generate a unique short URL after multiple attempts"
        )
