"""Bearer-token access to the catalog API.

The operator token may read and change records. The optional read token is
for dashboards and search consumers: it can list and fetch, but routes that
write to the stores or start workflows reject it.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status


@dataclass(frozen=True)
class AuthContext:
    principal: str
    can_write: bool = True


def _denied(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"code": code, "message": message, "details": {}, "retryable": False},
    )


def _matches(token: str, expected: str) -> bool:
    return bool(expected) and secrets.compare_digest(token.encode(), expected.encode())


def require_auth(request: Request) -> AuthContext:
    settings = request.app.state.services.settings
    if not settings.auth_enabled:
        return AuthContext(principal="anonymous")

    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _denied(status.HTTP_401_UNAUTHORIZED, "AUTH_REQUIRED", "Authorization token is required")
    if _matches(token, settings.auth_token):
        return AuthContext(principal="operator")
    if _matches(token, settings.auth_read_token):
        return AuthContext(principal="reader", can_write=False)
    raise _denied(status.HTTP_403_FORBIDDEN, "AUTH_FORBIDDEN", "Authorization token is invalid")


def require_write(auth: AuthContext = Depends(require_auth)) -> AuthContext:
    if not auth.can_write:
        raise _denied(status.HTTP_403_FORBIDDEN, "AUTH_READ_ONLY", "This token may only read catalog records")
    return auth
