"""
core/exceptions.py
Application error hierarchy. The API layer maps each class to an HTTP status.
"""


class CertiFlowError(Exception):
    """Base class for all application errors."""

    status_code: int = 500

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(CertiFlowError):
    """Bad or missing input, rejected before any work is started."""

    status_code = 400


class NotFoundError(CertiFlowError):
    """A referenced record does not exist."""

    status_code = 404


class InvalidJobStateError(CertiFlowError):
    """The job is not in a state that allows the requested operation."""

    status_code = 409


class CsvParseError(CertiFlowError, ValueError):
    """The uploaded file could not be read as delimited text."""

    status_code = 422


class CertificateRenderError(CertiFlowError):
    """A certificate could not be rendered from its template."""


class EmailDispatchError(CertiFlowError):
    """The SMTP relay rejected or failed to deliver a message."""

    status_code = 502
