"""Caller identity from a Firebase bearer credential.

The request carries ``Bearer <firebase ID token>``. A verified token yields
the subject (``user_id``) and the Firebase project it was issued for
(``aud``). Only projects on the allow-list are accepted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Protocol

import cachecontrol
import requests
from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from push_scheduler.errors import AuthError, InternalError
from push_scheduler.logging_utils import get_logger

log = get_logger(__name__)

FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"


@dataclass(frozen=True)
class Identity:
    user_id: str
    audience: str


@dataclass(frozen=True)
class AudienceAllowList:
    """Immutable set of recognised audiences (Firebase project ids)."""

    audiences: frozenset

    @classmethod
    def of(cls, audiences: Iterable[str]) -> "AudienceAllowList":
        return cls(frozenset(a.strip() for a in audiences if a and a.strip()))

    def __contains__(self, audience: object) -> bool:
        return audience in self.audiences

    def __len__(self) -> int:
        return len(self.audiences)


class IdentityVerifier(Protocol):
    def verify(self, credential: Optional[str]) -> Identity:
        """Return the verified identity or raise AuthError."""
        ...


def parse_bearer(header: Optional[str]) -> str:
    """Extract the token from a ``Bearer <token>`` header value."""
    if header is None or not header.strip():
        raise AuthError("missing_credential")

    parts = header.strip().split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        raise AuthError("malformed_credential")
    return parts[1]


class FirebaseIdentityVerifier:
    """Verify Firebase ID tokens against Google's signing keys."""

    def __init__(
        self,
        allow_list: AudienceAllowList,
        *,
        session: Optional[requests.Session] = None,
        clock_skew_seconds: int = 0,
    ) -> None:
        self.allow_list = allow_list
        # Google serves its signing certs with cache headers; honour them.
        self._request = google_requests.Request(
            session=session or cachecontrol.CacheControl(requests.Session())
        )
        self._clock_skew_seconds = int(clock_skew_seconds)

    def verify(self, credential: Optional[str]) -> Identity:
        token = parse_bearer(credential)
        claims = self._decode(token)
        return self.identity_from_claims(claims)

    def _decode(self, token: str) -> Dict[str, Any]:
        try:
            claims = id_token.verify_firebase_token(
                token,
                self._request,
                clock_skew_in_seconds=self._clock_skew_seconds,
            )
        except google_exceptions.TransportError as exc:
            log.error("auth_certs_unavailable", error=str(exc))
            raise InternalError("Identity provider unavailable") from exc
        except (ValueError, google_exceptions.GoogleAuthError) as exc:
            log.info("auth_token_rejected", error=type(exc).__name__)
            raise AuthError("invalid_credential") from exc
        if not isinstance(claims, dict):
            raise AuthError("invalid_credential")
        return claims

    def identity_from_claims(self, claims: Dict[str, Any]) -> Identity:
        """Map verified claims to an Identity, enforcing issuer and allow-list."""
        audience = claims.get("aud")
        user_id = claims.get("user_id") or claims.get("sub")
        if not isinstance(audience, str) or not audience or not isinstance(user_id, str) or not user_id:
            raise AuthError("invalid_credential")

        if claims.get("iss") != FIREBASE_ISSUER_PREFIX + audience:
            raise AuthError("invalid_credential")

        if audience not in self.allow_list:
            raise AuthError("unrecognized_audience", details={"audience": audience})

        return Identity(user_id=user_id, audience=audience)
