from datetime import timedelta
from typing import Optional
from pydantic import BaseModel
import jwt
from jwt.exceptions import InvalidTokenError
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from ..config import settings
from ..utils.timeutils import utcnow

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SERVICE = "service"

# OAuth2 scheme. Tokens are issued by the account service; this one only
# verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class TokenPrincipal(BaseModel):
    """Identity carried by a verified access token"""
    account_id: int
    role: str = ROLE_USER
    max_devices: int = -1  # negative means the configured default

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Data to encode in the token
        expires_delta: Token expiration time

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})

    # PyJWT automatically returns a string in version 2.x
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    return encoded_jwt


async def get_current_principal(token: str = Depends(oauth2_scheme)) -> TokenPrincipal:
    """
    Get the caller identity from the bearer token.

    Raises:
        HTTPException: If the token is invalid or expired
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        subject = payload.get("sub")

        if subject is None:
            raise credentials_exception

        return TokenPrincipal(
            account_id=int(subject),
            role=payload.get("role", ROLE_USER),
            max_devices=payload.get("max_devices", -1)
        )

    except (InvalidTokenError, ValueError):
        raise credentials_exception


async def require_admin(
    principal: TokenPrincipal = Depends(get_current_principal)
) -> TokenPrincipal:
    """
    Require an admin token.

    Raises:
        HTTPException: If the caller is not an admin
    """
    if not principal.is_admin:
        raise HTTPException(
            status_code=403,
            detail="Not enough permissions"
        )

    return principal


async def require_service(
    principal: TokenPrincipal = Depends(get_current_principal)
) -> TokenPrincipal:
    """Require a token issued to a proxy node or another internal service"""
    if principal.role not in (ROLE_SERVICE, ROLE_ADMIN):
        raise HTTPException(
            status_code=403,
            detail="Not enough permissions"
        )

    return principal
