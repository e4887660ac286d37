# Caller authentication: Authorization header → Identity.
# The identity provider itself is external; this module only defines the seam
# and the bearer-token implementation used in front of the GitHub API.


import hashlib
import re
from dataclasses import dataclass, field
from typing import NoReturn, Protocol, runtime_checkable

import structlog

from commitcast.exceptions import CommitCastError

logger = structlog.get_logger(__name__)

# GitHub tokens (ghp_/gho_/github_pat_ and classic 40-hex) fit comfortably.
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]{8,255}$")


@dataclass(frozen=True)
class Identity:
    """Authenticated caller.

    ``user_id`` is a stable non-secret key (used for rate limiting and logs);
    ``access_token`` is the credential forwarded to the source-control API.
    """

    user_id: str
    access_token: str = field(repr=False)


def bearer_token(authorization: str | None) -> str | None:
    """Token from a well-formed ``Bearer`` header, or None."""
    scheme, _, token = (authorization or "").strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not _TOKEN_PATTERN.fullmatch(token):
        return None
    return token


@runtime_checkable
class Authenticator(Protocol):
    async def authenticate(self, authorization: str | None) -> Identity:
        """Resolve the caller or raise an AuthenticationError."""
        ...


class BearerTokenAuthenticator:
    """Accepts ``Authorization: Bearer <access token>``.

    The token is not verified here: GitHub verifies it on the first upstream
    call and a 401 from GitHub maps back to AuthenticationError. Identity is
    a SHA-256 fingerprint of the token so raw tokens never become dict keys
    or log fields.
    """

    async def authenticate(self, authorization: str | None) -> Identity:
        scheme, _, token = (authorization or "").strip().partition(" ")
        token = token.strip()

        if scheme.lower() != "bearer" or not token:
            self._reject("missing_bearer_credential")
        if not _TOKEN_PATTERN.fullmatch(token):
            self._reject("malformed_bearer_credential")

        fingerprint = hashlib.sha256(token.encode()).hexdigest()[:16]
        return Identity(user_id=f"token:{fingerprint}", access_token=token)

    @staticmethod
    def _reject(reason: str) -> NoReturn:
        # The reason is logged server-side only; clients get a generic 401.
        logger.warning("auth_rejected", reason=reason)
        raise CommitCastError.authentication()
