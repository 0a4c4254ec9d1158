"""Recipes API router.

Endpoints:
- POST /api/recipes - Create recipe (optional Idempotency-Key)
- GET /api/recipes - Search recipes
- GET /api/recipes/{id} - Get recipe with body
- GET /api/recipes/{id}/image - Get recipe image bytes
- PUT /api/recipes/{id} - Replace recipe (owner only)
- DELETE /api/recipes/{id} - Soft-delete recipe (owner only)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.concurrency import run_in_threadpool

from ..deps import get_current_subject, get_recipe_engine
from ..infra.idempotency import (
    idempotency_clear_key,
    idempotency_precheck,
    idempotency_store_result,
)
from ..schemas import RecipeCreate, RecipeOut, RecipeSearch, RecipeUpdate
from ..services.recipes import RecipePersistenceEngine

router = APIRouter()
logger = logging.getLogger("recipebook.recipes")


@router.post("/recipes", response_model=RecipeOut, status_code=201)
async def create_recipe(
    request: Request,
    payload: RecipeCreate,
    subject: int = Depends(get_current_subject),
    engine: RecipePersistenceEngine = Depends(get_recipe_engine),
):
    """Create a recipe owned by the caller."""
    pre = await idempotency_precheck(request, subject=subject, route_key="recipe_create")
    if isinstance(pre, JSONResponse):
        return pre

    if pre is None:
        return await run_in_threadpool(engine.create, subject, payload)

    redis_key, req_hash = pre
    try:
        resp = await run_in_threadpool(engine.create, subject, payload)
    except Exception:
        await idempotency_clear_key(redis_key)
        raise

    # The recipe is committed; a failed store only loses the replay record
    try:
        await idempotency_store_result(redis_key, req_hash, status=201, body=resp.model_dump(mode="json"))
    except (RedisError, OSError) as e:
        logger.error(f"Could not record idempotent result for recipe {resp.id}: {e}")
    return resp


@router.get("/recipes", response_model=list[RecipeOut])
def search_recipes(
    name: Optional[str] = Query(None),
    description: Optional[str] = Query(None),
    author: Optional[str] = Query(None, description="Substring of the author's user name"),
    author_id: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
    engine: RecipePersistenceEngine = Depends(get_recipe_engine),
):
    """Search visible recipes, newest first. At least one filter is required."""
    query = RecipeSearch(
        name=name,
        description=description,
        author=author,
        author_id=author_id,
        limit=limit,
        offset=offset,
    )
    return engine.search(query)


@router.get("/recipes/{recipe_id}", response_model=RecipeOut)
def get_recipe(
    recipe_id: int,
    engine: RecipePersistenceEngine = Depends(get_recipe_engine),
):
    return engine.read(recipe_id)


@router.get("/recipes/{recipe_id}/image")
def get_recipe_image(
    recipe_id: int,
    engine: RecipePersistenceEngine = Depends(get_recipe_engine),
):
    data, media_type = engine.read_image(recipe_id)
    return Response(content=data, media_type=media_type)


@router.put("/recipes/{recipe_id}", response_model=RecipeOut)
def update_recipe(
    recipe_id: int,
    payload: RecipeUpdate,
    subject: int = Depends(get_current_subject),
    engine: RecipePersistenceEngine = Depends(get_recipe_engine),
):
    """Replace name, description and body of a recipe the caller owns."""
    return engine.update(recipe_id, subject, payload)


@router.delete("/recipes/{recipe_id}", status_code=204)
def delete_recipe(
    recipe_id: int,
    subject: int = Depends(get_current_subject),
    engine: RecipePersistenceEngine = Depends(get_recipe_engine),
):
    """Soft-delete a recipe the caller owns. Blob cleanup is best-effort."""
    engine.delete(recipe_id, subject)
    return Response(status_code=204)
