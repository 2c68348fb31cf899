"""Centralized JSON serialization utilities.

Pre-created partial functions for the serialization patterns used across the relay:
SSE frame payloads, MCP result rendering, and log previews.
"""

from __future__ import annotations

import json

from collections.abc import Callable
from functools import partial
from typing import Any

# Compact JSON for SSE payloads. Non-ASCII text is kept as-is so streamed
# tokens are not inflated into \uXXXX escapes.
# Example: json_compact({"content": "héllo"}) -> '{"content":"héllo"}'
json_compact: Callable[..., str] = partial(json.dumps, separators=(",", ":"), ensure_ascii=False, default=str)

# Pretty-printed JSON with 2-space indentation.
# Used to render structured MCP tool results as readable text blocks.
json_pretty: Callable[..., str] = partial(json.dumps, indent=2, ensure_ascii=False, default=str)


def safe_json_dumps(obj: Any, **kwargs: Any) -> str:
    """JSON serialization that never raises.

    Used for log previews where an unserializable payload must not break the
    request. Returns a JSON error object when serialization fails.

    Example:
        >>> safe_json_dumps({"data": datetime.now()})
        '{"data":"2025-01-20 10:30:00"}'
    """
    try:
        kwargs.setdefault("separators", (",", ":"))
        kwargs.setdefault("default", str)
        return json.dumps(obj, **kwargs)
    except (TypeError, ValueError) as e:
        return json.dumps({"error": f"Serialization failed: {e}"})


def loads_object(raw: str) -> dict[str, Any]:
    """Parse a JSON string that must decode to an object.

    Raises:
        ValueError: If the text is not valid JSON or is not a JSON object.
    """
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError(f"expected a JSON object, got {type(value).__name__}")
    return value
