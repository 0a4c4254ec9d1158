"""Pydantic schemas for RecipeBook API.

Request/response models for:
- Users and login tokens
- Recipe bodies (the blob payload) and composed recipe records
- Recipe search filters
"""

from datetime import datetime
from typing import Optional

from pydantic import (
    BaseModel,
    Base64Bytes,
    ConfigDict,
    Field,
    model_serializer,
    model_validator,
)


# --- Users ---

class UserCredentials(BaseModel):
    username: str = Field(..., min_length=1, max_length=80)
    password: str = Field(..., min_length=1, max_length=256)


class UserOut(BaseModel):
    id: int
    name: str
    created_at: datetime


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


# --- Recipe body ---

class Quantity(BaseModel):
    """Amount of an ingredient in exactly one unit."""
    model_config = ConfigDict(extra="forbid")

    grams: Optional[int] = Field(None, ge=0)
    liters: Optional[float] = Field(None, ge=0)
    count: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def _exactly_one_unit(self):
        given = [v for v in (self.grams, self.liters, self.count) if v is not None]
        if len(given) != 1:
            raise ValueError("quantity needs exactly one of grams, liters or count")
        return self

    @model_serializer(mode="wrap")
    def _drop_unused_units(self, handler):
        return {k: v for k, v in handler(self).items() if v is not None}


class Ingredient(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    quantity: Quantity


class RecipeBody(BaseModel):
    """Recipe payload kept in the blob store, fetched whole."""
    preparation_time: int = Field(0, ge=0)  # seconds
    cooking_time: int = Field(0, ge=0)  # seconds
    ingredients: list[Ingredient] = []
    steps: list[str] = []

    @model_validator(mode="after")
    def _no_blank_steps(self):
        if any(not s.strip() for s in self.steps):
            raise ValueError("steps must not be blank")
        return self


# --- Recipe requests ---

class RecipeUpdate(RecipeBody):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)

    def body(self) -> RecipeBody:
        return RecipeBody(
            preparation_time=self.preparation_time,
            cooking_time=self.cooking_time,
            ingredients=self.ingredients,
            steps=self.steps,
        )


class RecipeCreate(RecipeUpdate):
    image: Optional[Base64Bytes] = None  # base64 in JSON


class RecipeSearch(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None  # substring of the author's user name
    author_id: Optional[int] = None
    limit: Optional[int] = None
    offset: int = 0

    def is_empty(self) -> bool:
        text_filters = (self.name, self.description, self.author)
        return self.author_id is None and not any(f and f.strip() for f in text_filters)


# --- Recipe responses ---

class RecipeOut(RecipeBody):
    id: int
    name: str
    description: Optional[str]
    author: int
    author_name: str
    image_url: Optional[str] = None
    created_at: datetime
    edited_at: Optional[datetime] = None
