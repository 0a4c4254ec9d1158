"""Users API router.

Endpoints:
- POST /api/users - Register
- POST /api/users/login - Exchange name and password for a bearer token
- GET /api/users/login - Check a bearer token
- GET/PUT/DELETE /api/users/me - The caller's own account
"""

from fastapi import APIRouter, Depends, Request, Response

from ..deps import get_current_subject, get_user_service, limiter
from ..schemas import TokenOut, UserCredentials, UserOut
from ..services.users import UserService
from ..settings import settings

router = APIRouter()


@router.post("/users", response_model=UserOut, status_code=201)
def register(
    payload: UserCredentials,
    users: UserService = Depends(get_user_service),
):
    return users.register(payload)


@router.post("/users/login", response_model=TokenOut)
@limiter.limit(settings.login_rate_limit)
def login(
    request: Request,
    payload: UserCredentials,
    users: UserService = Depends(get_user_service),
):
    return users.login(payload)


@router.get("/users/login", status_code=204)
def check_login(subject: int = Depends(get_current_subject)):
    """204 if the bearer token is valid."""
    return Response(status_code=204)


@router.get("/users/me", response_model=UserOut)
def get_me(
    subject: int = Depends(get_current_subject),
    users: UserService = Depends(get_user_service),
):
    return users.me(subject)


@router.put("/users/me", response_model=UserOut)
def update_me(
    payload: UserCredentials,
    subject: int = Depends(get_current_subject),
    users: UserService = Depends(get_user_service),
):
    return users.update(subject, payload)


@router.delete("/users/me", status_code=204)
def delete_me(
    subject: int = Depends(get_current_subject),
    users: UserService = Depends(get_user_service),
):
    users.delete(subject)
    return Response(status_code=204)
