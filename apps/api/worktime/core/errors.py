from __future__ import annotations

from typing import Literal

UpstreamKind = Literal[
    "not_configured",
    "timeout",
    "transport",
    "http",
    "refusal",
    "truncated",
    "malformed",
]

# Postgres: lock_not_available, deadlock_detected, serialization_failure,
# query_canceled (lock_timeout / statement_timeout).
LOCK_CONTENTION_CODES = frozenset({"55P03", "40P01", "40001", "57014"})


class WorkError(Exception):
    status_code = 500
    code = "WORK_ERROR"

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def to_detail(self) -> dict[str, str | None]:
        return {"message": self.message, "code": self.code, "hint": self.hint}


class WorkValidationError(WorkError):
    status_code = 400
    code = "VALIDATION_FAILED"


class NotFoundError(WorkError):
    status_code = 404
    code = "NOT_FOUND"


class UpstreamError(WorkError):
    code = "UPSTREAM_FAILURE"

    def __init__(
        self,
        message: str,
        *,
        kind: UpstreamKind,
        upstream_status: int | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.kind = kind
        self.upstream_status = upstream_status

    @property
    def status_code(self) -> int:  # type: ignore[override]
        if self.kind == "timeout":
            return 504
        if self.kind == "not_configured":
            return 503
        return 502

    @property
    def retryable(self) -> bool:
        # A refusal is a decision by the model, not a transient fault.
        return self.kind in {"timeout", "transport", "http", "truncated"}

    def to_detail(self) -> dict[str, str | None]:
        detail = super().to_detail()
        detail["code"] = f"UPSTREAM_{self.kind.upper()}"
        return detail


class StorageError(WorkError):
    status_code = 503
    code = "STORAGE_FAILURE"

    def __init__(
        self,
        message: str,
        *,
        storage_code: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.storage_code = storage_code

    @property
    def lock_contention(self) -> bool:
        return self.storage_code in LOCK_CONTENTION_CODES


class RateLimitedError(WorkError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, *, limit: int, window_seconds: int, retry_after: int) -> None:
        super().__init__(
            "请求过于频繁",
            hint=f"每 {window_seconds} 秒最多 {limit} 次，请 {retry_after} 秒后再试。",
        )
        self.retry_after = retry_after
