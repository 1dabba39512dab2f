"""HTTP error helpers for extracting backend error details."""

from __future__ import annotations

import json
from typing import Any


def extract_error_detail(body: str) -> str:
    """Extract error detail from an HTTP error response body."""
    try:
        payload: Any = json.loads(body)
    except ValueError:
        return body

    if not isinstance(payload, dict):
        return str(payload)

    detail_payload = payload.get("detail", payload)
    if not isinstance(detail_payload, dict):
        return str(detail_payload)

    return str(
        detail_payload.get("error")
        or detail_payload.get("message")
        or detail_payload.get("exception")
        or body
    )


def truncate_url(url: str, limit: int = 80) -> str:
    """Shorten a (presigned) URL for logging."""
    return url[:limit] + "..." if len(url) > limit else url
