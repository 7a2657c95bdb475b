"""Exception hierarchy for tunebridge."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class TuneBridgeError(Exception):
    """Base exception for all tunebridge errors."""

    #: Status the front door should answer with when this error escapes.
    http_status: int = 500

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(TuneBridgeError):
    """Local configuration validation or resolution failed."""


class FeatureDisabled(TuneBridgeError):
    """The music feature (or a credential it needs) is not enabled."""

    http_status = 403


class MissingParameter(TuneBridgeError):
    """A required operation parameter was not supplied."""

    http_status = 400


class UpstreamError(TuneBridgeError):
    """A call to the backend failed.

    Carries retry metadata so callers can apply a bounded retry policy
    without brittle substring matching.
    """

    http_status = 502

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        platform: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.platform = platform
        self.phase = phase


class ConfigUnavailable(UpstreamError):
    """The method config could not be fetched from the config source."""


class ConfigMissing(UpstreamError):
    """The config source answered, but without a usable method config."""


class UpstreamRequestFailed(UpstreamError):
    """Network or decode failure talking to the backend API."""


class TransformError(TuneBridgeError):
    """A response transform could not be applied (recovered locally)."""


class ExpressionEvalError(TuneBridgeError):
    """A template placeholder failed to evaluate (recovered locally)."""


class DurableStoreError(TuneBridgeError):
    """Durable cache tier operation failed."""

    def __init__(
        self, message: str, *, hint: str | None = None, path: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.path = path


class DurableReadMiss(DurableStoreError):
    """No object at the expected path, or the lookup itself failed."""


class DurableWriteFailed(DurableStoreError):
    """Background population of the durable tier failed."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
