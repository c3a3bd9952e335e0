"""Bearer token checking for incoming HTTP requests."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any


class UnauthorizedError(Exception):
    """Raised by an authenticator when the token is not valid."""

    def __init__(self, message: str = "unauthorized") -> None:
        super().__init__(message)


class InsufficientScopeError(Exception):
    """Raised by an authenticator when the token lacks required scopes."""

    def __init__(self, message: str = "insufficient scope") -> None:
        super().__init__(message)


class AuthChallenge(Exception):
    """Authentication failed; carries the HTTP status and challenge header."""

    def __init__(self, status: int, www_authenticate: str | None = None) -> None:
        super().__init__(f"authentication failed with status {status}")
        self.status = status
        self.www_authenticate = www_authenticate


def _challenge(realm: str, error: str, description: str) -> str:
    return f'Bearer realm="{realm}", error="{error}", error_description="{description}"'


async def authenticate(authorization: str | None, authenticator: Any, realm: str) -> Any:
    """Check an Authorization header value and return the authenticated user.

    The authenticator must provide ``async check_authentication(token)``.
    Raises AuthChallenge when the request must be refused.
    """
    if not authorization:
        raise AuthChallenge(
            HTTPStatus.UNAUTHORIZED,
            _challenge(realm, "invalid_token", "no token provided"),
        )
    prefix = "Bearer "
    token = authorization[len(prefix):] if authorization.startswith(prefix) else ""
    if not token:
        raise AuthChallenge(
            HTTPStatus.BAD_REQUEST,
            _challenge(realm, "invalid_request", "invalid or absent authorization header"),
        )
    try:
        return await authenticator.check_authentication(token)
    except UnauthorizedError as exc:
        raise AuthChallenge(
            HTTPStatus.UNAUTHORIZED, _challenge(realm, "invalid_token", str(exc))
        ) from exc
    except InsufficientScopeError as exc:
        raise AuthChallenge(
            HTTPStatus.FORBIDDEN, _challenge(realm, "insufficient_scope", str(exc))
        ) from exc
    except Exception as exc:
        raise AuthChallenge(HTTPStatus.INTERNAL_SERVER_ERROR) from exc