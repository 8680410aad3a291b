from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
from pydantic import BaseModel, ValidationError

from localhy.config import settings
from localhy.core.exceptions import AuthenticationError
from localhy.schemas.user import User, UserRole


class TokenPayload(BaseModel):
    sub: str  # user id issued by the auth collaborator
    email: Optional[str] = None
    role: UserRole = UserRole.USER


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token; used by scripts and tests; production tokens come from auth."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> User:
    """Verify the JWT and return the principal it names."""
    if not settings.SECRET_KEY:
        raise AuthenticationError("Token verification is not configured")
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        token_data = TokenPayload.model_validate(payload)
    except (JWTError, ValidationError):
        raise AuthenticationError("Invalid authentication credentials")

    return User(id=token_data.sub, email=token_data.email, role=token_data.role)
