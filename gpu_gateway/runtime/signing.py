# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Request Signing — Gateway-to-backend authentication with a shared secret.

Every forwarded request carries
    X-Gateway-Signature: hex(sha256("{METHOD}:{url}:{timestamp_ms}:{secret}"))
    X-Gateway-Timestamp: {timestamp_ms}
where `url` is the path plus query string as the client sent it. A backend
(or another gateway) holding the same secret checks it with
`verify_signature`.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Callable, Dict, Optional

SIGNATURE_HEADER = "X-Gateway-Signature"
TIMESTAMP_HEADER = "X-Gateway-Timestamp"
DEFAULT_ALGORITHM = "sha256"


def compute_signature(
    method: str,
    url: str,
    timestamp: int,
    secret: str,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    payload = f"{method.upper()}:{url}:{timestamp}:{secret}"
    return hashlib.new(algorithm, payload.encode("utf-8")).hexdigest()


def verify_signature(
    method: str,
    url: str,
    timestamp: int,
    signature: str,
    secret: str,
    algorithm: str = DEFAULT_ALGORITHM,
) -> bool:
    """Constant-time check of a signature produced by `compute_signature`."""
    try:
        given = bytes.fromhex(signature)
    except ValueError:
        return False
    expected = bytes.fromhex(compute_signature(method, url, timestamp, secret, algorithm))
    if len(given) != len(expected):
        return False
    return hmac.compare_digest(given, expected)


class RequestSigner:
    """Produces signature headers for outgoing backend requests."""

    def __init__(
        self,
        secret: str,
        algorithm: str = DEFAULT_ALGORITHM,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if not secret:
            raise ValueError("RequestSigner needs a non-empty secret")
        # Fail at startup on an unknown algorithm, not on the first request
        hashlib.new(algorithm)
        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock or time.time

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def headers(self, method: str, url: str) -> Dict[str, str]:
        timestamp = int(self._clock() * 1000)
        return {
            SIGNATURE_HEADER: compute_signature(
                method, url, timestamp, self._secret, self._algorithm,
            ),
            TIMESTAMP_HEADER: str(timestamp),
        }

    def verify(self, method: str, url: str, timestamp: int, signature: str) -> bool:
        return verify_signature(method, url, timestamp, signature, self._secret, self._algorithm)
