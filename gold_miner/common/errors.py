"""Error taxonomy shared by the mining pipeline and its adapters."""

from __future__ import annotations

from typing import Any, Optional, Sequence

ERR_CODE_GITHUB_API = "GITHUB_API_ERROR"
ERR_CODE_DATABASE = "DATABASE_ERROR"
ERR_CODE_AI_PROCESSING = "AI_PROCESSING_ERROR"
ERR_CODE_NOTIFICATION = "NOTIFICATION_ERROR"
ERR_CODE_INVALID_INPUT = "INVALID_INPUT"
ERR_CODE_NOT_FOUND = "NOT_FOUND"
ERR_CODE_INTERNAL = "INTERNAL_ERROR"
ERR_CODE_RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
ERR_CODE_CANCELLED = "CANCELLED"


class ContextCancelled(Exception):
    """Cause recorded when a cancellation token is cancelled explicitly."""


class DeadlineExceeded(ContextCancelled, TimeoutError):
    """Cause recorded when a cancellation token's deadline passes."""


class MinerError(Exception):
    """Application-level error carrying a stable error code."""

    code = ERR_CODE_INTERNAL

    def __init__(self, message: str, *, code: Optional[str] = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"[{self.code}] {self.message}: {self.cause}"
        return f"[{self.code}] {self.message}"


class GitHubAPIError(MinerError):
    code = ERR_CODE_GITHUB_API


class StorageError(MinerError):
    code = ERR_CODE_DATABASE


class AppraisalError(MinerError):
    code = ERR_CODE_AI_PROCESSING


class AppraisalParseError(AppraisalError):
    """LLM answered, but not with a usable JSON verdict."""


class NotificationError(MinerError):
    code = ERR_CODE_NOTIFICATION


class InvalidInputError(MinerError, ValueError):
    code = ERR_CODE_INVALID_INPUT


class RetryExhaustedError(MinerError):
    """Every attempt failed; wraps the last observed error."""

    code = ERR_CODE_RETRY_EXHAUSTED

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"retry failed after {attempts} attempts", cause=last_error)
        self.attempts = attempts
        self.last_error = last_error


class OperationCancelledError(MinerError):
    """Work stopped because its cancellation token fired."""

    code = ERR_CODE_CANCELLED

    def __init__(
        self,
        cause: Optional[BaseException] = None,
        *,
        attempts: Optional[int] = None,
        message: str = "operation cancelled",
    ) -> None:
        if attempts is not None:
            message = f"{message} after {attempts} attempts"
        super().__init__(message, cause=cause or ContextCancelled("context cancelled"))
        self.attempts = attempts


class AppraisalInterruptedError(OperationCancelledError):
    """Appraisal batch abandoned by outer cancellation; carries the input batch."""

    def __init__(self, cause: Optional[BaseException], repositories: Sequence[Any]) -> None:
        super().__init__(cause, message="appraisal batch interrupted")
        self.repositories = list(repositories)
