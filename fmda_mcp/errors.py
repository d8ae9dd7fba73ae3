from typing import Any, List, Optional


class FileMakerMCPError(Exception):
    """Base class for errors raised by the connection and token layers."""


class ValidationError(FileMakerMCPError, ValueError):
    """One or more connection fields are missing or blank."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid connection: {', '.join(self.errors)}")


class DuplicateConnectionError(FileMakerMCPError, ValueError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Connection "{name}" already exists')


class NotFoundError(FileMakerMCPError, LookupError):
    """A connection name or token identity does not exist."""


class NoActiveConnectionError(FileMakerMCPError):
    def __init__(self) -> None:
        super().__init__(
            "No active connection. Use fm_set_connection or fm_connect to establish a connection."
        )


class CorruptStateError(FileMakerMCPError):
    """A persisted JSON file could not be parsed."""


class FileMakerAPIError(RuntimeError):
    """Non-success response from the FileMaker Data API."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: Optional[str] = None,
        payload: Any = None,
    ):
        self.status_code = status_code
        self.message = message
        self.code = code
        self.payload = payload
        detail = f"{message} (code {code})" if code else message
        super().__init__(f"FileMaker Data API error ({status_code}): {detail}")


class UnauthorizedError(FileMakerAPIError):
    """HTTP 401 from the Data API; the only failure that triggers re-authentication."""
