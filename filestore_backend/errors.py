from __future__ import annotations


class FileStoreError(Exception):
    """Base error for storage operations.

    Every subclass carries the HTTP status and a short machine-readable code so
    the route layer can turn it into a ``{success: false, ...}`` response
    without knowing which operation failed.
    """

    status_code = 500
    code = "ERROR"
    default_message = "Operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidPath(FileStoreError):
    status_code = 400
    code = "INVALID_PATH"
    default_message = "Invalid path"


class InvalidName(FileStoreError):
    status_code = 400
    code = "INVALID_NAME"
    default_message = "Invalid name"


class InvalidRequest(FileStoreError):
    status_code = 400
    code = "INVALID_REQUEST"
    default_message = "Bad request"


class NotFound(FileStoreError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "File/folder not found"


class AlreadyExists(FileStoreError):
    status_code = 409
    code = "ALREADY_EXISTS"
    default_message = "A file or folder with that name already exists"


class NotADirectory(FileStoreError):
    status_code = 400
    code = "NOT_A_DIRECTORY"
    default_message = "Path is not a folder"


class DirectoryNotEmpty(FileStoreError):
    status_code = 409
    code = "DIRECTORY_NOT_EMPTY"
    default_message = "Folder is not empty; use force delete to remove it with its contents"


class PayloadTooLarge(FileStoreError):
    status_code = 400
    code = "LIMIT_FILE_SIZE"
    default_message = "File too large"


class TooManyFiles(FileStoreError):
    status_code = 400
    code = "LIMIT_FILE_COUNT"
    default_message = "Too many files"


class UnsupportedType(FileStoreError):
    status_code = 400
    code = "UNSUPPORTED_TYPE"
    default_message = "File type not allowed"


class StorageIOError(FileStoreError):
    status_code = 500
    code = "STORAGE_ERROR"
    default_message = "Storage error"
