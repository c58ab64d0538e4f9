"""
Request authentication: shared bearer token plus optional HMAC signature.
"""

import base64
import hashlib
import hmac
from typing import Optional

from fastapi import Request

from ip_run_gate.config.loader import AuthConfig

SIGNATURE_HEADER = "x-signature"


class AuthError(Exception):
    """Raised when a request fails authentication."""
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def sign_body(secret: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 of a raw request body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def check_credentials(
    auth: AuthConfig,
    authorization: Optional[str],
    signature: Optional[str],
    body: bytes
) -> None:
    """Validate bearer token and signature.

    Raises:
        AuthError: 401 for a missing/malformed header or bad signature,
            403 for a wrong token
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError(401, "Missing or invalid Authorization header")

    token = authorization[len("Bearer "):].strip()
    if not hmac.compare_digest(token.encode("utf-8"), auth.token.encode("utf-8")):
        raise AuthError(403, "Invalid Token")

    if not auth.hmac_secret:
        return
    if signature is None:
        if auth.require_signature:
            raise AuthError(401, "Missing HMAC Signature")
        return
    expected = sign_body(auth.hmac_secret, body)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        raise AuthError(401, "Invalid HMAC Signature")


async def verify_request(request: Request) -> None:
    """FastAPI dependency guarding every authenticated route."""
    body = await request.body()
    check_credentials(
        request.app.state.config.auth,
        request.headers.get("authorization"),
        request.headers.get(SIGNATURE_HEADER),
        body,
    )
