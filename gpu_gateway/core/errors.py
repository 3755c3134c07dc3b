# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Gateway Errors — Unified error taxonomy.

User-visible errors carry an HTTP status and a stable code; they are
terminal for the request that raised them. Infrastructure errors are
recovered locally by the component that sees them.
"""

from __future__ import annotations

import math
import uuid
from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base user-visible error with structured response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.request_id = request_id or str(uuid.uuid4())
        super().__init__(message)

    def headers(self) -> Dict[str, str]:
        """Extra response headers for this error."""
        return {}

    def to_body(self) -> Dict[str, Any]:
        body = {
            "code": self.code,
            "message": self.message,
            "requestId": self.request_id,
        }
        if self.details:
            body["details"] = self.details
        return {"error": body}


class AuthenticationMissingError(GatewayError):
    def __init__(self, request_id: str = None):
        super().__init__(
            code="UNAUTHORIZED",
            message=(
                "Authentication required. Provide X-API-Key, X-Worker-Token, "
                "or Authorization header."
            ),
            status_code=401,
            request_id=request_id,
        )


class AuthenticationInvalidError(GatewayError):
    def __init__(self, reason: str, request_id: str = None):
        super().__init__(
            code="INVALID_CREDENTIALS",
            message=f"Invalid credentials: {reason}",
            status_code=401,
            request_id=request_id,
        )


class AdmissionRejectedError(GatewayError):
    """Rate limit exceeded. Not retriable until `retry_after` seconds pass."""

    def __init__(self, retry_after: float, request_id: str = None):
        self.retry_after = max(0, math.ceil(retry_after))
        super().__init__(
            code="RATE_LIMIT_EXCEEDED",
            message=f"Too many requests. Please retry after {self.retry_after} seconds.",
            status_code=429,
            details={"retryAfter": self.retry_after},
            request_id=request_id,
        )

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamUnreachableError(GatewayError):
    def __init__(self, target: str, reason: str = "", request_id: str = None):
        super().__init__(
            code="BAD_GATEWAY",
            message="Failed to reach the inference backend.",
            status_code=502,
            details={"target": target, "reason": reason} if reason else {"target": target},
            request_id=request_id,
        )


class StoreUnavailableError(Exception):
    """Raised when the shared state store cannot be reached."""

    def __init__(self, operation: str, key: str = "", cause: Optional[Exception] = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        super().__init__(
            f"Shared store unavailable during {operation}"
            + (f" ({key})" if key else "")
            + (f": {cause}" if cause else "")
        )
