"""Exceptions raised by the storage and reconciliation layer."""


class FileShareError(Exception):
    """Base class."""


class PathTraversalError(FileShareError):
    """Input resolves outside the managed upload directory."""


class BlobNotFoundError(FileShareError):
    """Record or blob is absent. Both causes are reported the same way."""


class BlobForbiddenError(FileShareError):
    """Stored path failed the path guard. Carries no path detail."""


class NotABlobError(FileShareError):
    """A link record was requested as downloadable content."""


class StreamFailure(FileShareError):
    """I/O error or truncation while a blob was being transferred."""


class UploadTooLargeError(FileShareError):
    pass


class UploadIngestionError(FileShareError):
    pass
