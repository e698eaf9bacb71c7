"""
Error taxonomy for token, path and resource checks.

Every error is scoped to a single request. The HTTP layer maps them to
responses through ``status_code``; ``public`` marks the ones that must look
identical to a caller so a denial never tells a prober more than "no such file".
"""


class ShareGateError(Exception):
    """Base class for all access and storage errors."""

    status_code = 500
    public = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidToken(ShareGateError):
    """Malformed token, rejected before any storage lookup."""
    status_code = 404
    public = True


class NotFound(ShareGateError):
    """Well-formed token with no bound (or no longer valid) resource."""
    status_code = 404
    public = True


class Denied(ShareGateError):
    """The resource exists but does not cover the requested name."""
    status_code = 404
    public = True


class PathEscape(ShareGateError):
    """A client-supplied path tried to leave its sandbox."""
    status_code = 404
    public = True


class InvalidReference(ShareGateError):
    """An operator-supplied file reference or destination name is unusable."""
    status_code = 400


class ResourceConflict(ShareGateError):
    """The storage location for a new resource already exists."""
    status_code = 409


class NameConflict(ShareGateError):
    """A file with the incoming name already exists in the upload."""
    status_code = 409


class MalformedUpload(ShareGateError):
    """A multipart upload body could not be parsed or carried no file."""
    status_code = 400


class TooLarge(ShareGateError):
    """An upload exceeds its size limit."""
    status_code = 413

    def __init__(self, message: str = "", limit: int = 0):
        super().__init__(message)
        self.limit = limit


PUBLIC_DETAIL = "No such file"
