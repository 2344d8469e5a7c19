"""Bearer-token check for sync invocations."""

from __future__ import annotations

import secrets

from pydantic import SecretStr

from inboxsync.domain.errors import AuthError


def verify_bearer(authorization: str | None, expected: SecretStr | None) -> None:
    """Raise AuthError unless ``authorization`` carries the configured token.

    An unconfigured token rejects every call.
    """
    token = expected.get_secret_value() if expected is not None else ""
    if not token:
        raise AuthError("Sync API token is not configured")

    scheme, _, presented = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not presented.strip():
        raise AuthError("Missing bearer token")

    if not secrets.compare_digest(presented.strip().encode(), token.encode()):
        raise AuthError("Invalid bearer token")
