# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Auth Guard — First stage of the request pipeline (priority 100).

Accepted credentials, in order:
  - X-API-Key: must be in the configured allowlist
  - X-Worker-Token: any token; identified by its salted hash
  - Authorization: Bearer <token>

Caller identity is always hex(sha256(token + salt)). External verifiers
sharing the salt compute the same value, so the formula must not change.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Iterable, List, Optional

from gpu_gateway.core.errors import (
    AuthenticationInvalidError,
    AuthenticationMissingError,
    GatewayError,
)
from gpu_gateway.core.request_context import AuthIdentity, RequestContext
from gpu_gateway.kernel.dispatcher import EventDispatcher, Subscription
from gpu_gateway.protocols.events import (
    AUTH_REJECTED,
    AUTH_VALIDATED,
    PRIORITY_AUTH,
    REQUEST_INCOMING,
)
from gpu_gateway.protocols.schema import GatewayEvent

logger = logging.getLogger("gateway.auth")


def hash_token(token: str, salt: str) -> str:
    """Salted SHA-256 identity hash, hex encoded."""
    return hashlib.sha256(f"{token}{salt}".encode("utf-8")).hexdigest()


class AuthGuard:
    """Authenticates requests and records the caller identity."""

    def __init__(
        self,
        dispatcher: EventDispatcher,
        token_salt: str,
        api_keys: Iterable[str] = (),
        admin_prefix: str = "/gateway/",
    ) -> None:
        self._dispatcher = dispatcher
        self._salt = token_salt
        self._api_keys: List[str] = list(api_keys)
        self._admin_prefix = admin_prefix
        self._subscriptions: List[Subscription] = []

    @property
    def api_key_count(self) -> int:
        return len(self._api_keys)

    def hash_token(self, token: str) -> str:
        return hash_token(token, self._salt)

    def validate_api_key(self, key: str) -> bool:
        """Constant-time allowlist check."""
        return any(hmac.compare_digest(key, known) for known in self._api_keys)

    # ── Lifecycle ───────────────────────────────────────────────

    def install(self) -> None:
        self._subscriptions.append(
            self._dispatcher.subscribe(REQUEST_INCOMING, self.on_request, priority=PRIORITY_AUTH)
        )
        logger.info("Auth guard installed (%d API keys configured)", len(self._api_keys))

    def uninstall(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions.clear()

    # ── Authentication ──────────────────────────────────────────

    def authenticate(self, ctx: RequestContext) -> AuthIdentity:
        """
        Resolve the caller identity from request headers.

        Raises AuthenticationMissingError when no credentials are present,
        AuthenticationInvalidError when only unusable credentials are.
        """
        invalid_reason: Optional[str] = None

        api_key = ctx.header("x-api-key")
        if api_key:
            if self.validate_api_key(api_key):
                return AuthIdentity(type="api-key", identity=self.hash_token(api_key))
            invalid_reason = "unknown API key"

        worker_token = ctx.header("x-worker-token")
        if worker_token:
            return AuthIdentity(type="token", identity=self.hash_token(worker_token))

        authorization = ctx.header("authorization")
        if authorization:
            scheme, _, token = authorization.partition(" ")
            if scheme == "Bearer" and token.strip():
                return AuthIdentity(type="bearer", identity=self.hash_token(token.strip()))
            invalid_reason = invalid_reason or "unsupported authorization scheme"

        if invalid_reason:
            raise AuthenticationInvalidError(invalid_reason, request_id=ctx.request_id)
        raise AuthenticationMissingError(request_id=ctx.request_id)

    async def on_request(self, event: GatewayEvent) -> None:
        ctx: RequestContext = event.payload
        if ctx.is_admin_path(self._admin_prefix):
            return

        try:
            ctx.auth = self.authenticate(ctx)
        except GatewayError as exc:
            ctx.rejection = exc
            event.cancel()
            logger.info("Auth rejected: %s", exc.code, extra=ctx.log_extra())
            await self._dispatcher.emit(
                AUTH_REJECTED,
                {"request_id": ctx.request_id, "reason": exc.code.lower()},
                source="auth",
            )
            return

        logger.debug("Authenticated %s", ctx.auth.display, extra=ctx.log_extra())
        await self._dispatcher.emit(
            AUTH_VALIDATED,
            {"request_id": ctx.request_id, "type": ctx.auth.type},
            source="auth",
        )
