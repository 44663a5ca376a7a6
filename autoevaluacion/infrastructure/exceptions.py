"""
Custom exception classes for the self-assessment service.

Provides structured error handling with user-friendly messages and error
categorization for backend, decoding, and assessment-flow failures.
"""

from __future__ import annotations

from typing import Any

import httpx

GENERIC_CONNECTION_MESSAGE = "No se pudo conectar con el servidor backend"


class AutoevaluacionError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        user_message: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.user_message = user_message or self._get_default_user_message()

    def _get_default_user_message(self) -> str:
        return "Ocurrió un error inesperado. Intente nuevamente."

    def __str__(self) -> str:
        return f"{self.__class__.__name__}: {self.message}"


class ValidationError(AutoevaluacionError):
    """Raised when input validation fails."""

    def __init__(
        self, field: str, message: str, value: Any = None, details: dict[str, Any] | None = None
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=f"Validation failed for field '{field}': {message}",
            details=details or {"field": field, "value": value},
            user_message=f"Dato inválido en {field.replace('_', ' ')}: {message}",
        )


class BackendError(AutoevaluacionError):
    """Raised when a call to the external backend fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        path: str | None = None,
        details: dict[str, Any] | None = None,
        user_message: str | None = None,
    ):
        self.status_code = status_code
        self.path = path
        super().__init__(
            message=message,
            details=details or {"status_code": status_code, "path": path},
            user_message=user_message,
        )


class BackendConnectionError(BackendError):
    """Raised when no response reached us (DNS, refused connection, timeout)."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            message=message,
            status_code=None,
            path=path,
            user_message=GENERIC_CONNECTION_MESSAGE,
        )


class BackendResponseError(BackendError):
    """Raised for non-2xx backend responses; ``message`` comes from the body when present."""

    def __init__(
        self,
        message: str,
        status_code: int,
        path: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            path=path,
            details=details,
            user_message=message,
        )


class ResponseDecodeError(BackendError):
    """Raised when a backend body is not JSON or does not have the expected shape."""

    def __init__(
        self,
        message: str,
        raw: str | None = None,
        status_code: int | None = None,
        path: str | None = None,
    ):
        self.raw = raw
        super().__init__(
            message=message,
            status_code=status_code,
            path=path,
            details={"raw": raw, "status_code": status_code, "path": path},
            user_message="El servidor devolvió una respuesta inesperada.",
        )


class AssessmentNotFoundError(AutoevaluacionError):
    """Raised when no active assessment exists for the given id."""

    def __init__(self, assessment_id: int):
        self.assessment_id = assessment_id
        super().__init__(
            message=f"Assessment {assessment_id} not found",
            details={"assessment_id": assessment_id},
        )

    def _get_default_user_message(self) -> str:
        return "No se encontró la autoevaluación solicitada."


class BusinessLogicError(AutoevaluacionError):
    """Raised when an assessment-flow rule is violated."""

    def __init__(
        self,
        message: str,
        rule: str | None = None,
        details: dict[str, Any] | None = None,
        user_message: str | None = None,
    ):
        self.rule = rule
        super().__init__(
            message=message,
            details=details or {"rule": rule},
            user_message=user_message or "La operación no está permitida en este momento.",
        )


class InvalidStateError(BusinessLogicError):
    """Raised when an operation is attempted in a state that does not allow it."""

    def __init__(self, operation: str, state: str):
        super().__init__(
            message=f"Cannot {operation} while in state {state}",
            rule="state",
            details={"operation": operation, "state": state},
        )


class IncompleteChapterError(BusinessLogicError):
    """Raised when advancing past a chapter that still has unanswered indicators."""

    def __init__(self, chapter_id: int, missing: list[int]):
        self.chapter_id = chapter_id
        self.missing = missing
        super().__init__(
            message=f"Chapter {chapter_id} has {len(missing)} unanswered indicators",
            rule="chapter_complete",
            details={"chapter_id": chapter_id, "missing_indicators": missing},
            user_message="Debe responder todos los indicadores del capítulo antes de continuar.",
        )


class FinalizeNotAllowedError(BusinessLogicError):
    """Raised when finalization gates are not satisfied."""

    def __init__(self, reason: str):
        self.reason = reason
        messages = {
            "not_last_chapter": "La autoevaluación solo puede finalizarse desde el último capítulo.",
            "incomplete": "Hay indicadores sin responder.",
            "saving": "Espere a que se guarden las respuestas antes de finalizar.",
        }
        super().__init__(
            message=f"Finalize not allowed: {reason}",
            rule="finalize",
            details={"reason": reason},
            user_message=messages.get(reason),
        )


class InvalidResponseError(BusinessLogicError):
    """Raised when a response references an unknown or disabled indicator or level."""

    def __init__(self, indicator_id: int, level_id: int | None = None, reason: str = ""):
        self.indicator_id = indicator_id
        self.level_id = level_id
        super().__init__(
            message=f"Invalid response for indicator {indicator_id}: {reason}",
            rule="response",
            details={"indicator_id": indicator_id, "level_id": level_id, "reason": reason},
            user_message="La respuesta seleccionada no es válida para este indicador.",
        )


def handle_backend_error(e: Exception, path: str | None = None) -> BackendError:
    """
    Convert httpx transport exceptions into the backend error taxonomy.

    Example:
        >>> try:
        ...     await client.get(url)
        ... except httpx.HTTPError as e:
        ...     raise handle_backend_error(e, "/autoevaluaciones") from e
    """
    if isinstance(e, BackendError):
        return e
    if isinstance(e, (httpx.TransportError, httpx.TimeoutException)):
        return BackendConnectionError(str(e) or type(e).__name__, path=path)
    return BackendError(str(e), path=path)


def create_user_friendly_error_message(error: Exception) -> str:
    """
    Create a user-friendly error message from any exception.

    Example:
        >>> message = create_user_friendly_error_message(IncompleteChapterError(1, [4]))
        >>> print(message)  # "Debe responder todos los indicadores del capítulo ..."
    """
    if isinstance(error, AutoevaluacionError):
        return error.user_message

    error_type = type(error).__name__
    messages = {
        "ValueError": "Los datos ingresados no son válidos.",
        "KeyError": "Falta información requerida.",
        "TypeError": "El formato de los datos es incorrecto.",
    }
    return messages.get(error_type, "Ocurrió un error inesperado. Intente nuevamente.")


def log_error_details(error: Exception, context: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Create structured error details for logging.

    Example:
        >>> details = log_error_details(BackendConnectionError("refused"), {"assessment_id": 3})
        >>> print(details["error_type"])  # "BackendConnectionError"
    """
    details = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context or {},
    }

    if isinstance(error, AutoevaluacionError):
        details.update({"user_message": error.user_message, "error_details": error.details})

    return details
