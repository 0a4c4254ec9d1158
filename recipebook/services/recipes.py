"""Recipe persistence engine.

Keeps the metadata row and its blobs (body, optional image) consistent
without a shared transaction:

- create: row -> body blob -> image blob -> image ref, undone in reverse on failure
- read/search: row gates visibility; a visible row without a readable body is a
  storage failure, never silently hidden
- update: ownership-checked conditional row update, then body overwrite
- delete: one conditional soft-delete statement, then best-effort blob cleanup

Create writes the row first because its id is the body's blob key. A crash
between the row insert and the body write leaves a visible row with no body;
`services.reconcile` retires such rows.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from ..core.gate import AuthorizationGate
from ..errors import (
    BadRequest,
    MalformedPayload,
    NoSuchUser,
    NotFound,
    PayloadTooLarge,
    StorageFailure,
)
from ..schemas import RecipeBody, RecipeCreate, RecipeOut, RecipeSearch, RecipeUpdate
from ..storage.blobs import BlobNotFound, BlobStore, BlobStoreError, InvalidBlobKey
from .metadata import MetadataStore, RecipeRow
from .saga import Saga

logger = logging.getLogger("recipebook.recipes")

IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def body_key(recipe_id: int) -> str:
    return f"recipe-{recipe_id}.json"


def new_image_key() -> str:
    return f"image-{uuid.uuid4().hex}"


def sniff_image_type(data: bytes) -> Optional[str]:
    """Media type from magic bytes, or None if not a supported image."""
    for signature, media_type in IMAGE_SIGNATURES:
        if data.startswith(signature):
            return media_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def image_url(recipe_id: int) -> str:
    return f"/api/recipes/{recipe_id}/image"


class RecipePersistenceEngine:
    def __init__(
        self,
        metadata: MetadataStore,
        blobs: BlobStore,
        gate: AuthorizationGate,
        *,
        search_default_limit: int = 10,
        search_max_limit: int = 255,
        max_image_bytes: int = 5 * 1024 * 1024,
    ):
        self.metadata = metadata
        self.blobs = blobs
        self.gate = gate
        self.search_default_limit = search_default_limit
        self.search_max_limit = search_max_limit
        self.max_image_bytes = max_image_bytes

    # --- Blob helpers ---

    def _write_blob(self, key: str, data: bytes) -> None:
        try:
            self.blobs.write(key, data)
        except BlobStoreError as e:
            raise StorageFailure(f"blob store: write {key}", error=str(e)) from e

    def _read_blob(self, key: str, recipe_id: int) -> bytes:
        try:
            return self.blobs.read(key)
        except BlobNotFound as e:
            # The row is visible, so the blob must exist
            logger.error(f"Recipe {recipe_id} is visible but blob {key} is missing")
            raise StorageFailure(f"blob store: missing {key}", recipe_id=recipe_id) from e
        except InvalidBlobKey as e:
            logger.error(f"Recipe {recipe_id} references unusable blob key {key!r}")
            raise MalformedPayload(f"bad blob key for recipe {recipe_id}") from e
        except BlobStoreError as e:
            raise StorageFailure(f"blob store: read {key}", error=str(e)) from e

    def _discard_blob(self, key: str, recipe_id: int) -> bool:
        removed = self.blobs.delete(key)
        if not removed:
            logger.warning(f"Could not remove blob {key} of recipe {recipe_id}; left for reconciliation")
        return removed

    def _load_body(self, recipe_id: int) -> RecipeBody:
        raw = self._read_blob(body_key(recipe_id), recipe_id)
        try:
            return RecipeBody.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Body blob of recipe {recipe_id} is corrupt: {e}")
            raise MalformedPayload(f"corrupt body for recipe {recipe_id}") from e

    @staticmethod
    def _compose(row: RecipeRow, body: RecipeBody) -> RecipeOut:
        return RecipeOut(
            id=row.id,
            name=row.name,
            description=row.description,
            author=row.author,
            author_name=row.author_name,
            image_url=image_url(row.id) if row.image_ref else None,
            created_at=row.created_at,
            edited_at=row.edited_at,
            preparation_time=body.preparation_time,
            cooking_time=body.cooking_time,
            ingredients=body.ingredients,
            steps=body.steps,
        )

    def _check_image(self, image: bytes) -> None:
        if len(image) > self.max_image_bytes:
            raise PayloadTooLarge(f"Image exceeds {self.max_image_bytes} bytes")
        if sniff_image_type(image) is None:
            raise BadRequest("Image must be PNG, JPEG, GIF or WebP")

    # --- Operations ---

    def create(self, subject: int, draft: RecipeCreate) -> RecipeOut:
        if draft.image is not None:
            self._check_image(draft.image)

        # A deleted account can still hold an unexpired token
        if self.metadata.get_active_user(subject) is None:
            raise NoSuchUser()

        body_bytes = draft.body().model_dump_json().encode("utf-8")

        with Saga("create recipe") as saga:
            recipe_id = self.metadata.insert_recipe(draft.name, draft.description, subject)
            saga.push("remove recipe row", self.metadata.purge_recipe, recipe_id)

            key = body_key(recipe_id)
            self._write_blob(key, body_bytes)
            saga.push("remove body blob", self._discard_blob, key, recipe_id)

            if draft.image is not None:
                image_key = new_image_key()
                self._write_blob(image_key, draft.image)
                saga.push("remove image blob", self._discard_blob, image_key, recipe_id)
                self.metadata.set_image_ref(recipe_id, image_key)

            row = self.metadata.get_recipe(recipe_id)
            if row is None:
                raise StorageFailure(f"Recipe {recipe_id} vanished during create")

        logger.info(f"Created recipe {recipe_id} for user {subject}")
        return self._compose(row, draft.body())

    def read(self, recipe_id: int) -> RecipeOut:
        row = self.metadata.get_recipe(recipe_id)
        if row is None:
            raise NotFound("No such recipe")
        return self._compose(row, self._load_body(recipe_id))

    def read_image(self, recipe_id: int) -> tuple[bytes, str]:
        """Image bytes and media type of a visible recipe."""
        row = self.metadata.get_recipe(recipe_id)
        if row is None or not row.image_ref:
            raise NotFound("No such recipe image")
        data = self._read_blob(row.image_ref, recipe_id)
        return data, sniff_image_type(data) or "application/octet-stream"

    def search(self, query: RecipeSearch) -> list[RecipeOut]:
        limit = self.search_default_limit if query.limit is None else query.limit
        if limit > self.search_max_limit:
            raise PayloadTooLarge(f"limit must not exceed {self.search_max_limit}")
        if limit < 1:
            raise BadRequest("limit must be positive")
        if query.offset < 0:
            raise BadRequest("offset must not be negative")
        if query.is_empty():
            raise BadRequest("At least one search filter is required")

        rows = self.metadata.search_recipes(
            name=(query.name or "").strip() or None,
            description=(query.description or "").strip() or None,
            author_name=(query.author or "").strip() or None,
            author_id=query.author_id,
            limit=limit,
            offset=query.offset,
        )
        # Fail the whole search if any body is unreadable
        return [self._compose(row, self._load_body(row.id)) for row in rows]

    def update(self, recipe_id: int, subject: int, changes: RecipeUpdate) -> RecipeOut:
        row = self.metadata.get_recipe(recipe_id)
        if row is None:
            raise NotFound("No such recipe")
        self.gate.require_owner(subject, row.author)

        edited_at = datetime.now(timezone.utc)
        updated = self.metadata.update_recipe(
            recipe_id,
            author=subject,
            name=changes.name,
            description=changes.description,
            edited_at=edited_at,
        )
        if not updated:
            # Deleted between the fetch and the update
            raise NotFound("No such recipe")

        # Not atomic with the row update; replaying the same update converges
        body = changes.body()
        self._write_blob(body_key(recipe_id), body.model_dump_json().encode("utf-8"))

        logger.info(f"Updated recipe {recipe_id} for user {subject}")
        return self._compose(
            row.model_copy(update={
                "name": changes.name,
                "description": changes.description,
                "edited_at": edited_at,
            }),
            body,
        )

    def delete(self, recipe_id: int, subject: int) -> None:
        deleted = self.metadata.soft_delete_recipe(recipe_id, author=subject)
        if deleted is None:
            # Nothing flipped; only classify the error
            row = self.metadata.get_recipe(recipe_id)
            if row is not None:
                self.gate.require_owner(subject, row.author)
            raise NotFound("No such recipe")

        logger.info(f"Deleted recipe {recipe_id} for user {subject}")

        # Row is authoritative; leftover blobs are only a reclaim concern
        for key in (body_key(recipe_id), deleted.image_ref):
            if not key:
                continue
            try:
                self._discard_blob(key, recipe_id)
            except Exception as e:
                logger.warning(f"Failed to delete blob {key} for recipe {recipe_id}: {e}")
