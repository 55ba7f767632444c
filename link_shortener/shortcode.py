"""Short token generation and custom alias validation."""

import logging
from typing import Callable, Optional

from .errors import AlreadyTaken, GenerationExhausted, InvalidFormat
from .utils import ALPHABET, generate_short_code, random_length
from .validators import MAX_SHORTENED_LENGTH, is_alphanumeric, is_reserved_route


class ShortCodeGenerator:
    """Generate collision-checked short tokens."""

    BASE62_CHARS = ALPHABET

    MIN_LENGTH = 3
    MAX_LENGTH = 6

    def __init__(
        self,
        shortened_exists: Callable[[str], bool],
        max_attempts: int = 10,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize short token generator.

        Args:
            shortened_exists: Returns True if a link already uses the token
            max_attempts: Maximum draws before giving up
            logger: Optional logger
        """
        self.shortened_exists = shortened_exists
        self.max_attempts = max_attempts
        self.logger = logger or logging.getLogger(__name__)

    def is_available(self, token: str) -> bool:
        """A token is available when no link uses it and it isn't a reserved route."""
        if is_reserved_route(token):
            return False
        return not self.shortened_exists(token)

    def generate_random(self) -> str:
        """Draw one token; length varies per call between MIN_LENGTH and MAX_LENGTH."""
        length = random_length(self.MIN_LENGTH, self.MAX_LENGTH)
        return generate_short_code(length)

    def generate_unique(self) -> str:
        """Generate a token no existing link uses.

        Returns:
            Available short token

        Raises:
            GenerationExhausted: If every attempt collided
        """
        for attempt in range(self.max_attempts):
            token = self.generate_random()
            if self.is_available(token):
                if attempt:
                    self.logger.debug(f"Generated token after {attempt + 1} attempts: {token}")
                return token

        self.logger.warning(f"Token generation exhausted after {self.max_attempts} attempts")
        raise GenerationExhausted(
            "failed to generate a unique short URL after multiple attempts"
        )

    def validate_custom(self, candidate: str) -> str:
        """Check a caller-chosen token.

        Raises:
            InvalidFormat: If the token is empty, too long or not alphanumeric
            AlreadyTaken: If a link uses it or it is a reserved route
        """
        if not is_alphanumeric(candidate or ""):
            raise InvalidFormat("custom_url must be alphanumeric")
        if len(candidate) > MAX_SHORTENED_LENGTH:
            raise InvalidFormat(
                f"custom_url must be at most {MAX_SHORTENED_LENGTH} characters"
            )
        if not self.is_available(candidate):
            raise AlreadyTaken("custom_url is already in use, or is reserved")
        return candidate
