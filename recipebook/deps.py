"""FastAPI dependencies for RecipeBook API.

Provides:
- Token codec and authorization gate (signing key read once)
- Blob store, metadata store and the services built on them
- Request subject resolution from the Authorization header
- The shared rate limiter
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from .core.gate import AuthorizationGate
from .core.tokens import TokenCodec
from .db import get_db
from .services.metadata import MetadataStore
from .services.recipes import RecipePersistenceEngine
from .services.users import UserService
from .settings import settings
from .storage.blobs import BlobStore, get_store

# Rate limiter (per-IP)
limiter = Limiter(key_func=get_remote_address)


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec(settings.signing_key(), settings.jwt_algorithm)


def get_gate(codec: TokenCodec = Depends(get_token_codec)) -> AuthorizationGate:
    return AuthorizationGate(codec)


@lru_cache
def get_blob_store() -> BlobStore:
    return get_store()


def get_metadata_store(db: Session = Depends(get_db)) -> MetadataStore:
    return MetadataStore(db)


def get_recipe_engine(
    metadata: MetadataStore = Depends(get_metadata_store),
    blobs: BlobStore = Depends(get_blob_store),
    gate: AuthorizationGate = Depends(get_gate),
) -> RecipePersistenceEngine:
    return RecipePersistenceEngine(
        metadata,
        blobs,
        gate,
        search_default_limit=settings.search_default_limit,
        search_max_limit=settings.search_max_limit,
        max_image_bytes=settings.max_image_bytes,
    )


def get_user_service(
    metadata: MetadataStore = Depends(get_metadata_store),
    codec: TokenCodec = Depends(get_token_codec),
) -> UserService:
    return UserService(metadata, codec, token_ttl_seconds=settings.token_ttl_seconds)


def get_current_subject(
    authorization: Optional[str] = Header(None),
    gate: AuthorizationGate = Depends(get_gate),
) -> int:
    """User id of the bearer token.

    Raises:
        CredentialsMissing: no Authorization header (401)
        CredentialsInvalid: bad signature, malformed or expired token (403)
    """
    return gate.authorize(authorization)
