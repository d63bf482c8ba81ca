from fastapi import status


# =========================
# Base
# =========================
class NLQueryError(Exception):
    """
    Base error for the question -> SQL -> rows pipeline.

    Every subclass carries the HTTP status it maps to, the API layer renders
    all of them as {"error": message}.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# =========================
# Client errors
# =========================
class MissingInput(NLQueryError):
    status_code = status.HTTP_400_BAD_REQUEST


class UnsafeQuery(NLQueryError):
    """Generated text did not pass the SELECT-only guard."""

    status_code = status.HTTP_400_BAD_REQUEST


# =========================
# Upstream errors
# =========================
class SourceUnavailable(NLQueryError):
    """Schema catalog could not be retrieved."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class GenerationUnavailable(NLQueryError):
    """Generation call failed, timed out or returned nothing."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ExecutionFailed(NLQueryError):
    """Backend rejected or errored on a validated query."""

    status_code = status.HTTP_502_BAD_GATEWAY


class ChartRenderFailed(NLQueryError):
    # Logged only, never returned to the caller
    pass
