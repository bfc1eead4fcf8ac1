from __future__ import annotations

from typing import Any


def _detail(error_code: str, message: str, **extra: Any) -> dict[str, Any]:
    detail: dict[str, Any] = {"error_code": error_code, "message": message}
    if extra:
        detail.update(extra)
    return detail


class TermValidationError(ValueError):
    @classmethod
    def build(cls, message: str, **extra: Any) -> TermValidationError:
        return cls(_detail("TERM_VALIDATION_ERROR", message, **extra))


class FetchError(RuntimeError):
    error_code = "FETCH_FAILED"

    @classmethod
    def build(cls, message: str, **extra: Any) -> FetchError:
        return cls(_detail(cls.error_code, message, **extra))


class RetryableFetchError(FetchError):
    error_code = "FETCH_RETRYABLE"


class FatalFetchError(FetchError):
    error_code = "FETCH_FATAL"


class RetriesExhaustedError(FetchError):
    error_code = "FETCH_RETRIES_EXHAUSTED"


class CacheError(RuntimeError):
    @classmethod
    def build(cls, message: str, **extra: Any) -> CacheError:
        return cls(_detail("CACHE_UNAVAILABLE", message, **extra))


def detail_from_exception(exc: Exception, *, default_code: str = "EVENTO_SYNC_FAILED") -> dict[str, Any]:
    if exc.args and isinstance(exc.args[0], dict):
        return dict(exc.args[0])
    return {"error_code": default_code, "message": str(exc)}
