"""Error taxonomy for the link shortener.

Every error carries the HTTP status the web layer answers with, so routes never
have to translate business failures by hand.
"""


class LinkShortenerError(Exception):
    """Base class for all classified failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LinkShortenerError):
    status_code = 400


class InvalidURL(ValidationError):
    pass


class DisallowedScheme(ValidationError):
    pass


class SelfReferential(ValidationError):
    pass


class InvalidFormat(ValidationError):
    pass


class NoFieldsToUpdate(ValidationError):
    pass


class Unauthorized(LinkShortenerError):
    status_code = 401


class Forbidden(LinkShortenerError):
    status_code = 403


class NotFound(LinkShortenerError):
    status_code = 404


class Conflict(LinkShortenerError):
    status_code = 409


class AlreadyTaken(Conflict):
    pass


class GenerationExhausted(LinkShortenerError):
    status_code = 503


class StoreError(LinkShortenerError):
    status_code = 500


class InvalidRedirect(LinkShortenerError):
    status_code = 500


class RootKeyMissing(LinkShortenerError):
    """Raised at startup when no root key exists and none is configured."""
