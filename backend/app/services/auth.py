import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..core.security import (
    create_access_token,
    create_refresh_token,
    get_password_hash,
    verify_password,
    verify_token,
)
from ..db.base import get_db
from ..models.sql_models import Organization as SQLOrganization
from ..models.sql_models import User as SQLUser
from ..models.user import Token, User, UserCreate

logger = logging.getLogger(__name__)


class AuthService:
    """Service for handling authentication and user management."""

    def __init__(self, db: Session):
        self.db = db

    async def register_user(self, user_create: UserCreate) -> User:
        """Register a new user.

        Raises:
            HTTPException: If the email is already registered or the organization is unknown
        """
        existing_user = self.db.query(SQLUser).filter(SQLUser.email == user_create.email).first()
        if existing_user:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )
        if user_create.org_id:
            org = self.db.query(SQLOrganization).filter(SQLOrganization.id == user_create.org_id).first()
            if org is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Unknown organization"
                )
        db_user = SQLUser(
            email=user_create.email,
            hashed_password=get_password_hash(user_create.password),
            first_name=user_create.first_name,
            user_role=user_create.user_role,
            org_id=user_create.org_id,
            is_active=True,
        )
        self.db.add(db_user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )
        self.db.refresh(db_user)
        logger.info("Registered user %s", db_user.id)
        return User.from_row(db_user)

    async def authenticate_user(self, email: str, password: str) -> Optional[SQLUser]:
        """Return the user row when the credentials match, None otherwise."""
        user = self.db.query(SQLUser).filter(SQLUser.email == email).first()
        if not user:
            return None
        if not verify_password(password, user.hashed_password):
            return None
        return user

    def _issue_tokens(self, user_id: str) -> Token:
        settings = get_settings()
        return Token(
            access_token=create_access_token(data={"sub": user_id}),
            refresh_token=create_refresh_token(data={"sub": user_id}),
            token_type="bearer",
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user_id=user_id,
        )

    async def login(self, email: str, password: str) -> Token:
        """Log in a user and return access and refresh tokens.

        Raises:
            HTTPException: If authentication fails
        """
        user = await self.authenticate_user(email, password)
        if not user or not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect email or password",
                headers={"WWW-Authenticate": "Bearer"},
            )
        user.last_login = datetime.now(timezone.utc)
        self.db.commit()
        return self._issue_tokens(user.id)

    async def refresh_tokens(self, refresh_token: str) -> Token:
        """Exchange a refresh token for a new token pair.

        Raises:
            HTTPException: If the refresh token is invalid
        """
        token_data = verify_token(refresh_token)
        if token_data.type != "refresh":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type"
            )
        user = self.db.query(SQLUser).filter(SQLUser.id == token_data.sub).first()
        if user is None or not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found or inactive"
            )
        return self._issue_tokens(user.id)


def get_auth_service(db: Session = Depends(get_db)) -> AuthService:
    """Dependency for getting the auth service."""
    return AuthService(db)
