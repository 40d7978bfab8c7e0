from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel

from ....core.security import get_current_active_user
from ....models.user import Token, User, UserCreate
from ....services.auth import AuthService, get_auth_service

router = APIRouter()


class RefreshRequest(BaseModel):
    refresh_token: str


@router.post("/register", response_model=User, status_code=status.HTTP_201_CREATED)
async def register(
    user_in: UserCreate,
    auth_service: AuthService = Depends(get_auth_service),
) -> Any:
    """
    Register a new user.

    Args:
        user_in: User registration data
        auth_service: Authentication service

    Returns:
        User: The created user
    """
    return await auth_service.register_user(user_in)


@router.post("/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    auth_service: AuthService = Depends(get_auth_service),
) -> Any:
    """
    Log in a user and return access and refresh tokens.

    Args:
        form_data: Login form data (username is the email)
        auth_service: Authentication service

    Returns:
        Token: Access and refresh tokens
    """
    return await auth_service.login(form_data.username, form_data.password)


@router.post("/refresh", response_model=Token)
async def refresh_token(
    body: RefreshRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> Any:
    """Exchange a refresh token for a new token pair."""
    return await auth_service.refresh_tokens(body.refresh_token)


@router.get("/me", response_model=User)
async def read_users_me(
    current_user: User = Depends(get_current_active_user),
) -> Any:
    """Get the current user."""
    return current_user
