"""Signed, self-contained authorization tokens.

Format: a JWT (HS512 unless configured otherwise) carrying
`{"sub": "<user id>", "exp": <unix seconds>}`. Nothing is persisted; a token
is valid iff its signature matches and `now < exp`.

The signing key is fixed for the lifetime of a codec. Rotating it invalidates
every outstanding token at once; there is no grace window.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Union

import jwt
from jwt.exceptions import DecodeError, InvalidSignatureError, InvalidTokenError
from jwt.utils import base64url_decode

BAD_SIGNATURE = "bad_signature"
MALFORMED = "malformed"
EXPIRED = "expired"


class TokenError(Exception):
    """Base exception for token verification failures."""
    reason = MALFORMED


class TokenSignatureError(TokenError):
    """Signature does not match the payload."""
    reason = BAD_SIGNATURE


class TokenMalformedError(TokenError):
    """Token cannot be decoded or lacks the expected claims."""
    reason = MALFORMED


class TokenExpiredError(TokenError):
    """Token is past its expiry."""
    reason = EXPIRED


@dataclass(frozen=True)
class IssuedToken:
    token: str
    subject: int
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _readable_header_and_claims(token: str) -> bool:
    """True if the first two segments are base64url JSON objects."""
    parts = token.split(".")
    if len(parts) != 3:
        return False
    try:
        header, claims = (json.loads(base64url_decode(part)) for part in parts[:2])
    except ValueError:
        return False
    return isinstance(header, dict) and isinstance(claims, dict)


class TokenCodec:
    def __init__(
        self,
        key: bytes,
        algorithm: str = "HS512",
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not key:
            raise ValueError("Token signing key must not be empty")
        self._key = key
        self._algorithm = algorithm
        self._clock = clock

    def issue_token(self, subject: int, ttl: Union[timedelta, int]) -> IssuedToken:
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)
        expires_at = self._clock() + ttl
        exp = int(expires_at.timestamp())
        token = jwt.encode(
            {"sub": str(subject), "exp": exp},
            self._key,
            algorithm=self._algorithm,
        )
        return IssuedToken(
            token=token,
            subject=subject,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    def issue(self, subject: int, ttl: Union[timedelta, int]) -> str:
        """Sign a token for `subject` that expires `ttl` from now."""
        return self.issue_token(subject, ttl).token

    def verify(self, token: str) -> int:
        """Return the subject of a valid token.

        Raises:
            TokenSignatureError: signature mismatch
            TokenMalformedError: undecodable token or bad claims
            TokenExpiredError: now >= exp
        """
        try:
            # Expiry is checked below against the injected clock
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "require": ["sub", "exp"]},
            )
        except InvalidSignatureError as e:
            raise TokenSignatureError(str(e)) from e
        except DecodeError as e:
            # Intact header and claims: the signature segment itself is damaged
            if _readable_header_and_claims(token):
                raise TokenSignatureError(str(e)) from e
            raise TokenMalformedError(str(e)) from e
        except InvalidTokenError as e:
            raise TokenMalformedError(str(e)) from e

        exp = claims["exp"]
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise TokenMalformedError("exp claim is not a timestamp")
        try:
            subject = int(claims["sub"])
        except (TypeError, ValueError) as e:
            raise TokenMalformedError("sub claim is not a user id") from e

        if self._clock().timestamp() >= exp:
            raise TokenExpiredError("Token expired")
        return subject
