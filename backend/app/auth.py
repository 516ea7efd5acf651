"""Authentication (token verification) and role permissions."""
import logging
import time
from uuid import UUID
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from .config import settings
from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    """Decode JWT access token issued by the identity service."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _credentials_error()

    now = int(time.time())
    exp = payload.get("exp")
    if exp is None:
        raise _credentials_error()
    try:
        exp_int = int(exp)
    except (TypeError, ValueError):
        raise _credentials_error()
    if now > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise _credentials_error("Token expired")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise _credentials_error()
        # Reject tokens issued in the future beyond clock skew.
        if iat_int > now + int(settings.JWT_LEEWAY_SECONDS):
            raise _credentials_error()
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise _credentials_error()
    try:
        return UUID(str(sub))
    except ValueError:
        raise _credentials_error()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user."""
    payload = decode_token(credentials.credentials)

    if payload.get("type", "access") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type"
        )

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive"
        )
    return user


# Project role permissions matrix
ROLE_PERMISSIONS = {
    "admin": {
        "canManageTemplates": True,
        "canCompleteItems": True,
        "canVerifyItems": True,
        "canRequestHoldPointRelease": True,
        "canReleaseHoldPoints": True,
        "canEscalate": True,
        "canConformLots": True,
    },
    "project_manager": {
        "canManageTemplates": True,
        "canCompleteItems": True,
        "canVerifyItems": True,
        "canRequestHoldPointRelease": True,
        "canReleaseHoldPoints": True,
        "canEscalate": True,
        "canConformLots": True,
    },
    "quality_manager": {
        "canManageTemplates": True,
        "canCompleteItems": True,
        "canVerifyItems": True,
        "canRequestHoldPointRelease": True,
        "canReleaseHoldPoints": True,
        "canEscalate": True,
        "canConformLots": True,
    },
    "superintendent": {
        "canManageTemplates": False,
        "canCompleteItems": True,
        "canVerifyItems": True,
        "canRequestHoldPointRelease": True,
        "canReleaseHoldPoints": True,
        "canEscalate": True,
        "canConformLots": False,
    },
    "site_engineer": {
        "canManageTemplates": False,
        "canCompleteItems": True,
        "canVerifyItems": False,
        "canRequestHoldPointRelease": True,
        "canReleaseHoldPoints": False,
        "canEscalate": True,
        "canConformLots": False,
    },
    "foreman": {
        "canManageTemplates": False,
        "canCompleteItems": True,
        "canVerifyItems": False,
        "canRequestHoldPointRelease": True,
        "canReleaseHoldPoints": False,
        "canEscalate": False,
        "canConformLots": False,
    },
    "subcontractor": {
        "canManageTemplates": False,
        "canCompleteItems": True,
        "canVerifyItems": False,
        "canRequestHoldPointRelease": False,
        "canReleaseHoldPoints": False,
        "canEscalate": False,
        "canConformLots": False,
    },
}


def check_permission(role: str | None, permission: str) -> bool:
    """Check if a project role has a specific permission."""
    permissions = ROLE_PERMISSIONS.get(role or "", {})
    return permissions.get(permission, False)
