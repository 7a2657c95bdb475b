"""Wire-level defaults for TuneHub, OpenList and media CDN calls."""

from __future__ import annotations

# Statuses worth another attempt; shared by error mapping and RetryPolicy.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

# Several platforms refuse requests without a browser-looking agent.
DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

# Metadata calls (method configs, parse, durable lookups) vs. audio transfers.
DEFAULT_REQUEST_TIMEOUT_S = 15.0
DEFAULT_MEDIA_TIMEOUT_S = 120.0
