"""Authorization gate in front of every mutating operation."""

import logging
from typing import Optional

from ..errors import CredentialsInvalid, CredentialsMissing, Forbidden
from .tokens import TokenCodec, TokenError

logger = logging.getLogger("recipebook.auth")

BEARER_SCHEME = "bearer"


class AuthorizationGate:
    def __init__(self, codec: TokenCodec):
        self.codec = codec

    def authorize(self, credential: Optional[str]) -> int:
        """Verify a request credential and return the subject (user id).

        Accepts `Bearer <token>` or a bare token.

        Raises:
            CredentialsMissing: nothing was presented
            CredentialsInvalid: the token codec rejected it
        """
        token = (credential or "").strip()
        scheme, _, rest = token.partition(" ")
        if scheme.lower() == BEARER_SCHEME:
            token = rest.strip()
        if not token:
            raise CredentialsMissing()

        try:
            return self.codec.verify(token)
        except TokenError as e:
            logger.info(f"Rejected token ({e.reason}): {e}")
            raise CredentialsInvalid(e.reason) from e

    def require_owner(self, subject: int, resource_author: int) -> None:
        """`resource_author` must come from the stored row, never the client."""
        if subject != resource_author:
            raise Forbidden()

    def authorize_owner(self, credential: Optional[str], resource_author: int) -> int:
        subject = self.authorize(credential)
        self.require_owner(subject, resource_author)
        return subject
