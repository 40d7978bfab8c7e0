from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import get_db
from ..models.user import TokenData, User

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# OAuth2 scheme (match actual login endpoint for Swagger UI)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash.

    Args:
        plain_password: The plain text password
        hashed_password: The hashed password

    Returns:
        bool: True if the password is correct, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password.

    Args:
        password: The plain text password

    Returns:
        str: The hashed password
    """
    return pwd_context.hash(password)


def _encode(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire, "type": token_type})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a new access token.

    Args:
        data: The data to encode in the token (``sub`` is the user id)
        expires_delta: Optional expiration time delta

    Returns:
        str: The encoded JWT token
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=get_settings().ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode(data, "access", expires_delta)


def create_refresh_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a new refresh token.

    Args:
        data: The data to encode in the token
        expires_delta: Optional expiration time delta

    Returns:
        str: The encoded JWT refresh token
    """
    if expires_delta is None:
        expires_delta = timedelta(days=get_settings().REFRESH_TOKEN_EXPIRE_DAYS)
    return _encode(data, "refresh", expires_delta)


def decode_token(token: str) -> TokenData:
    """Decode and validate a JWT.

    Raises:
        JWTError: If the token is malformed, expired or has no subject
    """
    settings = get_settings()
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    data = TokenData(sub=payload.get("sub"), type=payload.get("type"))
    if not data.sub:
        raise JWTError("Token has no subject")
    return data


def subject_from_authorization(authorization: Optional[str]) -> Optional[str]:
    """Return the user id carried by an ``Authorization: Bearer`` header.

    Returns None when the header is absent, is not a bearer header, or the
    token does not verify as an access token.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        data = decode_token(token.strip())
    except JWTError:
        return None
    if data.type != "access":
        return None
    return data.sub


def verify_token(token: str) -> TokenData:
    """Verify a JWT token.

    Args:
        token: The JWT token to verify

    Returns:
        TokenData: The decoded subject and token type

    Raises:
        HTTPException: If the token is invalid or expired
    """
    try:
        return decode_token(token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)
) -> User:
    """Get the current user from the JWT token.

    Args:
        token: The JWT token
        db: Database session

    Returns:
        User: The current user

    Raises:
        HTTPException: If the user is not found or token is invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    token_data = verify_token(token)
    if token_data.type != "access":
        raise credentials_exception

    from ..models.sql_models import User as SQLUser
    db_user = db.query(SQLUser).filter(SQLUser.id == token_data.sub).first()
    if db_user is None:
        raise credentials_exception
    return User.from_row(db_user)


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Get the current active user.

    Raises:
        HTTPException: If the user is inactive
    """
    if not current_user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user
