from typing import Any, Dict, Optional

from fastapi import status


class GatewayError(Exception):
    """Base class for every failure that is reported to the caller."""

    error_type = "Internal Server Error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(GatewayError):
    """Encryption key or IV is absent or malformed."""

    error_type = "Configuration Error"


class DecryptionError(GatewayError):
    """Ciphertext is malformed or was not produced under the configured key/IV."""

    error_type = "Decryption Error"
    status_code = status.HTTP_400_BAD_REQUEST


class RequestValidationFailed(GatewayError):
    error_type = "Validation Error"
    status_code = status.HTTP_400_BAD_REQUEST


class ConnectError(GatewayError):
    """The database could not be reached or rejected the credentials."""

    error_type = "Connect Error"


class QueryError(GatewayError):
    """The statement failed after a session was opened."""

    error_type = "Query Error"


class UnhandledError(GatewayError):
    error_type = "Internal Server Error"


def describe_exception(error: BaseException) -> Dict[str, Any]:
    """
    Best-effort, JSON safe details about a driver exception.
    Only the class name, driver error code and SQLSTATE are exposed.
    """
    details: Dict[str, Any] = {"name": type(error).__name__}

    # SQLAlchemy wraps DBAPI errors, the interesting attributes live on .orig
    original = getattr(error, "orig", None) or error
    if original is not error:
        details["driver_error"] = type(original).__name__

    for attr in ("errorcode", "code", "sqlstate", "pgcode"):
        value = getattr(original, attr, None)
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            details[attr] = value

    return details


def driver_message(error: BaseException) -> str:
    original = getattr(error, "orig", None) or error
    # hdbcli exposes the server text as errortext
    message = getattr(original, "errortext", None) or str(original)
    return message or type(original).__name__


def error_envelope(error: GatewayError) -> Dict[str, Any]:
    return {
        "error": {
            "type": error.error_type,
            "message": error.message,
            "details": error.details,
        }
    }
