"""Transport-error helpers.

Network calls wrap httpx exceptions into ``UpstreamError`` subclasses with
retry metadata so caller-side retry stays bounded and deterministic.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from tunebridge._http import RETRYABLE_STATUS_CODES
from tunebridge.errors import UpstreamError, UpstreamRequestFailed, _walk_exception_chain


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after_s", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        # httpx.RequestError raises on .response access when none is attached.
        try:
            response = getattr(e, "response", None)
        except RuntimeError:
            response = None
        headers: Any = getattr(response, "headers", None)
        if headers is None:
            continue
        raw = headers.get("Retry-After")
        if isinstance(raw, str) and raw.strip():
            try:
                seconds = float(raw)
            except ValueError:
                continue
            if seconds >= 0:
                return seconds
    return None


def wrap_transport_error(
    exc: BaseException,
    *,
    platform: str | None,
    phase: str,
    error_cls: type[UpstreamError] = UpstreamRequestFailed,
    message: str | None = None,
    hint: str | None = None,
) -> UpstreamError:
    """Map httpx/decoding exceptions into *error_cls* with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, UpstreamError):
        if exc.platform is None:
            exc.platform = platform
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    retryable = retry_after_s is not None
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    else:
        for e in _walk_exception_chain(exc):
            if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
                retryable = True
                break

    msg = message or f"{platform or 'tunehub'} {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return error_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=hint,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        platform=platform,
        phase=phase,
    )
