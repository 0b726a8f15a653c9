"""Exception types raised by the explorer core."""


class ExplorerError(Exception):
    """Base class for explorer errors."""


class QueryError(ExplorerError):
    """A query failed.

    The message carries the engine error, optionally followed by
    ``Available tables: a, b`` when table discovery succeeded.
    """


class InvalidDatabaseFileError(ExplorerError):
    """An uploaded file could not be opened as a DuckDB database."""


class FileTooLargeError(ExplorerError):
    """An uploaded file exceeded the configured size limit."""

    def __init__(self, max_bytes: int):
        super().__init__(f"File exceeds maximum size of {max_bytes} bytes")
        self.max_bytes = max_bytes
