"""Error taxonomy for the share service.

Every error a client may see derives from :class:`ShareError` and carries an
HTTP status, a machine-readable ``code`` and a message that is safe to show.
"""

from .config import MIB


class ShareError(Exception):
    """Base class for errors rendered as ``{"error", "code"}`` responses."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NoFilesError(ShareError):
    """Raised when an upload request carries no file parts."""

    status_code = 400
    code = "NO_FILES"

    def __init__(self) -> None:
        super().__init__("No files uploaded")


class TooManyFilesError(ShareError):
    """Raised when a batch has more files than allowed."""

    status_code = 400
    code = "LIMIT_FILE_COUNT"

    def __init__(self, max_count: int) -> None:
        self.max_count = max_count
        super().__init__(f"Too many files selected. Maximum is {max_count}.")


class FileTooLargeError(ShareError):
    """Raised when a single file exceeds the per-file size limit."""

    status_code = 400
    code = "LIMIT_FILE_SIZE"

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = max_bytes
        super().__init__(f"File too large. Maximum size is {max_bytes / MIB:g}MB.")


class GroupNotFoundError(ShareError):
    status_code = 404
    code = "GROUP_NOT_FOUND"

    def __init__(self, group_id: str) -> None:
        self.group_id = group_id
        super().__init__("File group not found")


class BlobNotFoundError(ShareError):
    status_code = 404
    code = "FILE_NOT_FOUND"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__("File not found")


class StorageError(ShareError):
    """Raised when blobs or the group document cannot be written.

    The message shown to clients is generic; the cause is kept on
    ``__cause__`` and logged server side.
    """

    status_code = 500
    code = "STORAGE_ERROR"

    def __init__(self, message: str = "An unknown server error occurred during upload.") -> None:
        super().__init__(message)
