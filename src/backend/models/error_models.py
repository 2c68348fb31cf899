"""
Error response models for MCP Chat Relay.

Only failures detected before a chat stream starts are returned as JSON error
bodies; once the SSE response has begun, chat handlers report failures in-band
as system notices. Every error code carries its HTTP status so routes and
middleware never pick statuses by hand.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorCode(str, Enum):
    """Error codes returned in ``error.code``, grouped by family prefix."""

    # Request problems (2xxx)
    VALIDATION_ERROR = "VAL_2001"
    REQUEST_TOO_LARGE = "VAL_2005"
    UNKNOWN_CHAT_MODE = "VAL_2006"

    # Routing (3xxx)
    RESOURCE_NOT_FOUND = "RES_3001"

    # Upstream services: OpenAI and the MCP server (7xxx)
    EXTERNAL_SERVICE_ERROR = "EXT_7001"
    EXTERNAL_TIMEOUT = "EXT_7002"
    EXTERNAL_RATE_LIMITED = "EXT_7003"
    OPENAI_ERROR = "EXT_7010"
    OPENAI_AUTH_FAILED = "EXT_7011"
    MCP_SERVER_ERROR = "EXT_7020"

    # Relay itself (9xxx)
    INTERNAL_ERROR = "INT_9001"
    INTERNAL_CONFIGURATION_ERROR = "INT_9002"
    INTERNAL_UNEXPECTED = "INT_9999"

    @property
    def http_status(self) -> int:
        return ERROR_CODE_TO_STATUS.get(self, 500)


ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.REQUEST_TOO_LARGE: 413,
    ErrorCode.UNKNOWN_CHAT_MODE: 422,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    # An unreachable or failing upstream is the gateway's problem, not the client's
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCode.EXTERNAL_TIMEOUT: 503,
    ErrorCode.EXTERNAL_RATE_LIMITED: 429,
    ErrorCode.OPENAI_ERROR: 502,
    ErrorCode.OPENAI_AUTH_FAILED: 502,
    ErrorCode.MCP_SERVER_ERROR: 502,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.INTERNAL_CONFIGURATION_ERROR: 500,
    ErrorCode.INTERNAL_UNEXPECTED: 500,
}

# Codes for errors that arrive as a bare HTTP status (HTTPException)
STATUS_TO_ERROR_CODE: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    413: ErrorCode.REQUEST_TOO_LARGE,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.EXTERNAL_RATE_LIMITED,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    503: ErrorCode.EXTERNAL_TIMEOUT,
}


def get_status_code(error_code: ErrorCode) -> int:
    """HTTP status for an error code (500 when unmapped)."""
    return error_code.http_status


def code_for_status(status_code: int) -> ErrorCode:
    return STATUS_TO_ERROR_CODE.get(status_code, ErrorCode.INTERNAL_ERROR)


class ErrorDetail(BaseModel):
    """One field-level problem inside an error response."""

    field: str | None = None
    message: str
    code: str | None = None

    @classmethod
    def from_validation_errors(cls, errors: Iterable[Mapping[str, Any]]) -> list[ErrorDetail]:
        """Convert pydantic ``errors()`` entries, joining each ``loc`` with dots."""
        return [
            cls(
                field=".".join(str(part) for part in error.get("loc", ())),
                message=error["msg"],
                code=error.get("type"),
            )
            for error in errors
        ]

    @classmethod
    def from_mapping(cls, details: Mapping[str, Any]) -> list[ErrorDetail]:
        """Convert free-form exception details to one entry per key."""
        return [cls(field=key, message=str(value)) for key, value in details.items()]


class ErrorResponse(BaseModel):
    """Body of every JSON error returned by the relay, under an ``error`` key.

    Example:
    {
        "error": {
            "code": "VAL_2006",
            "message": "Unknown chat mode: turbo",
            "request_id": "req_3f9c0a7d51e2b864",
            "timestamp": "2025-01-15T10:30:00Z",
            "path": "/api/chat"
        }
    }
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: list[ErrorDetail] | None = None
    path: str | None = None
    # Only sent when DEBUG is on
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    @property
    def status_code(self) -> int:
        return self.code.http_status

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude_none=True)
        if include_debug and self.debug:
            data["debug"] = self.debug
        return {"error": data}


class ErrorResponseWrapper(BaseModel):
    """OpenAPI schema of an error body."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "INT_9002",
                    "message": "Service configuration error",
                    "request_id": "req_3f9c0a7d51e2b864",
                    "timestamp": "2025-01-15T10:30:00Z",
                    "path": "/api/chat",
                }
            }
        }
    )

    error: ErrorResponse


__all__ = [
    "ERROR_CODE_TO_STATUS",
    "STATUS_TO_ERROR_CODE",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "ErrorResponseWrapper",
    "code_for_status",
    "get_status_code",
]
