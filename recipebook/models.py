"""SQLAlchemy ORM models for RecipeBook.

Tables:
- users: Accounts; soft-deleted, names unique among live accounts
- recipes: Recipe metadata; the body and image live in the blob store
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Text,
    Integer,
    Boolean,
    ForeignKey,
    Index,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func, false

from .db import Base


class User(Base):
    """Account that can author recipes.

    `deleted` only ever goes false -> true.
    """
    __tablename__ = "users"
    __table_args__ = (
        Index(
            "uq_users_live_name",
            "name",
            unique=True,
            postgresql_where=text("NOT deleted"),
            sqlite_where=text("NOT deleted"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    password_digest: Mapped[str] = mapped_column(String(255), nullable=False)
    deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    recipes: Mapped[list["Recipe"]] = relationship("Recipe", back_populates="author_user")


class Recipe(Base):
    """Recipe metadata row.

    `id` doubles as the blob key of the recipe body; `image_ref` is the blob
    key of the optional image.
    """
    __tablename__ = "recipes"
    __table_args__ = (
        Index("ix_recipes_author", "author"),
        Index("ix_recipes_deleted_created", "deleted", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    author: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    image_ref: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    edited_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    author_user: Mapped["User"] = relationship("User", back_populates="recipes")
