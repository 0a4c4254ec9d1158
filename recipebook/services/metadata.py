"""Relational metadata store for users and recipes.

Every public method runs one unit of work and commits (or rolls back) before
returning, so no transaction stays open while the caller talks to the blob
store. Rows leave this module as typed projections (`UserRow`, `RecipeRow`,
`RecipeRef`); a row that does not fit its projection raises
`MalformedPayload`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import Conflict, MalformedPayload, StorageFailure
from ..models import Recipe, User

logger = logging.getLogger("recipebook.metadata")

P = TypeVar("P", bound=BaseModel)


class UserRow(BaseModel):
    id: int
    name: str
    password_digest: str
    deleted: bool
    created_at: datetime


class RecipeRow(BaseModel):
    id: int
    name: str
    description: Optional[str]
    author: int
    author_name: str
    image_ref: Optional[str]
    deleted: bool
    created_at: datetime
    edited_at: Optional[datetime]


class RecipeRef(BaseModel):
    """Just enough of a recipe row to find its blobs."""
    id: int
    image_ref: Optional[str]
    deleted: bool


def _project(model: type[P], row) -> P:
    try:
        return model.model_validate(dict(row._mapping))
    except ValidationError as e:
        raise MalformedPayload(f"Malformed {model.__name__} row", error=str(e)) from e


_USER_COLUMNS = (User.id, User.name, User.password_digest, User.deleted, User.created_at)


class MetadataStore:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _statement(self, action: str, conflict: Optional[str] = None) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if conflict is not None:
                raise Conflict(conflict) from e
            logger.error(f"Integrity error while trying to {action}: {e}")
            raise StorageFailure(f"metadata store: {action}", error=str(e)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error while trying to {action}: {e}")
            raise StorageFailure(f"metadata store: {action}", error=str(e)) from e
        except Exception:
            self.db.rollback()
            raise

    # --- Users ---

    def get_active_user(self, user_id: int) -> Optional[UserRow]:
        with self._statement("fetch user"):
            row = self.db.execute(
                select(*_USER_COLUMNS).where(User.id == user_id, User.deleted.is_(False))
            ).first()
        return _project(UserRow, row) if row else None

    def find_active_user(self, name: str) -> Optional[UserRow]:
        with self._statement("look up user by name"):
            row = self.db.execute(
                select(*_USER_COLUMNS).where(User.name == name, User.deleted.is_(False))
            ).first()
        return _project(UserRow, row) if row else None

    def insert_user(self, name: str, password_digest: str) -> UserRow:
        with self._statement("create user", conflict="A user with that name already exists"):
            user = User(name=name, password_digest=password_digest)
            self.db.add(user)
            self.db.flush()
            user_id = user.id
        return self.get_active_user(user_id)

    def update_user(self, user_id: int, name: str, password_digest: str) -> Optional[UserRow]:
        with self._statement("update user", conflict="A user with that name already exists"):
            result = self.db.execute(
                update(User)
                .where(User.id == user_id, User.deleted.is_(False))
                .values(name=name, password_digest=password_digest)
                .execution_options(synchronize_session=False)
            )
            matched = result.rowcount
        if matched == 0:
            return None
        return self.get_active_user(user_id)

    def soft_delete_user(self, user_id: int) -> bool:
        with self._statement("delete user"):
            result = self.db.execute(
                update(User)
                .where(User.id == user_id, User.deleted.is_(False))
                .values(deleted=True)
                .execution_options(synchronize_session=False)
            )
            matched = result.rowcount
        return matched == 1

    # --- Recipes ---

    def _recipe_query(self):
        return select(
            Recipe.id,
            Recipe.name,
            Recipe.description,
            Recipe.author,
            User.name.label("author_name"),
            Recipe.image_ref,
            Recipe.deleted,
            Recipe.created_at,
            Recipe.edited_at,
        ).join(User, User.id == Recipe.author)

    def insert_recipe(self, name: str, description: Optional[str], author: int) -> int:
        with self._statement("create recipe record"):
            recipe = Recipe(name=name, description=description, author=author)
            self.db.add(recipe)
            self.db.flush()
            recipe_id = recipe.id
        return recipe_id

    def set_image_ref(self, recipe_id: int, image_ref: str) -> None:
        with self._statement("record recipe image"):
            result = self.db.execute(
                update(Recipe)
                .where(Recipe.id == recipe_id)
                .values(image_ref=image_ref)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StorageFailure(f"Recipe {recipe_id} vanished while recording its image")

    def purge_recipe(self, recipe_id: int) -> None:
        """Hard-delete a row that never finished being created."""
        with self._statement("purge recipe record"):
            self.db.execute(
                delete(Recipe)
                .where(Recipe.id == recipe_id)
                .execution_options(synchronize_session=False)
            )

    def get_recipe(self, recipe_id: int) -> Optional[RecipeRow]:
        """Fetch a visible (non-deleted) recipe."""
        with self._statement("fetch recipe"):
            row = self.db.execute(
                self._recipe_query().where(Recipe.id == recipe_id, Recipe.deleted.is_(False))
            ).first()
        return _project(RecipeRow, row) if row else None

    def search_recipes(
        self,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        author_name: Optional[str] = None,
        author_id: Optional[int] = None,
        limit: int,
        offset: int = 0,
    ) -> list[RecipeRow]:
        """Conjunction of the given filters over visible recipes, newest first."""
        query = self._recipe_query().where(Recipe.deleted.is_(False))
        if name:
            query = query.where(Recipe.name.icontains(name, autoescape=True))
        if description:
            query = query.where(Recipe.description.icontains(description, autoescape=True))
        if author_name:
            query = query.where(User.name.icontains(author_name, autoescape=True))
        if author_id is not None:
            query = query.where(Recipe.author == author_id)
        query = query.order_by(Recipe.created_at.desc(), Recipe.id.desc()).offset(offset).limit(limit)

        with self._statement("search recipes"):
            rows = self.db.execute(query).all()
        return [_project(RecipeRow, row) for row in rows]

    def update_recipe(
        self,
        recipe_id: int,
        *,
        author: int,
        name: str,
        description: Optional[str],
        edited_at: datetime,
    ) -> bool:
        """Update a visible recipe owned by `author`. False if no row matched."""
        with self._statement("update recipe"):
            result = self.db.execute(
                update(Recipe)
                .where(Recipe.id == recipe_id, Recipe.author == author, Recipe.deleted.is_(False))
                .values(name=name, description=description, edited_at=edited_at)
                .execution_options(synchronize_session=False)
            )
            matched = result.rowcount
        return matched == 1

    def soft_delete_recipe(self, recipe_id: int, *, author: int) -> Optional[RecipeRef]:
        """Flip `deleted` on a visible recipe owned by `author` in one statement.

        Returns the deleted row's refs, or None if nothing matched.
        """
        with self._statement("delete recipe"):
            row = self.db.execute(
                update(Recipe)
                .where(Recipe.id == recipe_id, Recipe.author == author, Recipe.deleted.is_(False))
                .values(deleted=True)
                .returning(Recipe.id, Recipe.image_ref, Recipe.deleted)
                .execution_options(synchronize_session=False)
            ).first()
        return _project(RecipeRef, row) if row else None

    def mark_recipe_deleted(self, recipe_id: int, *, created_before: Optional[datetime] = None) -> bool:
        query = update(Recipe).where(Recipe.id == recipe_id, Recipe.deleted.is_(False))
        if created_before is not None:
            query = query.where(Recipe.created_at < created_before)
        with self._statement("retire recipe"):
            result = self.db.execute(
                query
                .values(deleted=True)
                .execution_options(synchronize_session=False)
            )
            matched = result.rowcount
        return matched == 1

    def list_recipe_refs(self, *, deleted: bool, created_before: Optional[datetime] = None) -> list[RecipeRef]:
        query = select(Recipe.id, Recipe.image_ref, Recipe.deleted).where(Recipe.deleted.is_(deleted))
        if created_before is not None:
            query = query.where(Recipe.created_at < created_before)
        with self._statement("list recipe refs"):
            rows = self.db.execute(query.order_by(Recipe.id)).all()
        return [_project(RecipeRef, row) for row in rows]
