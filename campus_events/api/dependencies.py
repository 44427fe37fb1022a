"""
API dependencies for Campus Events Service.
Resolves the authenticated principal from the identity provider's JWT.
"""

from typing import Dict, Any
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
import logging

from campus_events.core.config import config
from campus_events.db.database import db_manager
from campus_events.db.redis_client import redis_manager

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer()

ROLES = ("user", "club", "admin")


class AuthenticationError(Exception):
    """Custom exception for authentication errors."""
    pass


def _principal_from_claims(payload: Dict[str, Any]) -> Dict[str, Any]:
    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError("Invalid token: missing user_id")

    role = payload.get("role")
    if role not in ROLES:
        raise AuthenticationError("Invalid token: missing role")

    name = " ".join(part for part in (payload.get("first_name"), payload.get("last_name")) if part)
    return {
        "user_id": int(user_id),
        "role": role,
        "email": payload.get("email"),
        "name": name or None,
        "college_name": payload.get("college_name"),
        "is_iiitian": bool(payload.get("is_iiitian", False)),
    }


async def get_current_principal(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict[str, Any]:
    """
    Extract and validate the authenticated principal from a JWT.

    Returns:
        Dictionary with user_id, role, email, name, college_name and is_iiitian

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        jwt_secret = await config.get_jwt_secret()
        jwt_algorithm = await config.get_jwt_algorithm()

        payload = jwt.decode(
            credentials.credentials,
            jwt_secret,
            algorithms=[jwt_algorithm]
        )
        return _principal_from_claims(payload)

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    except (TypeError, ValueError) as e:
        logger.error(f"Authentication error: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_user_role(principal: Dict[str, Any] = Depends(get_current_principal)) -> Dict[str, Any]:
    """Require a participant account."""
    if principal["role"] != "user":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User access required"
        )
    return principal


async def require_club_role(principal: Dict[str, Any] = Depends(get_current_principal)) -> Dict[str, Any]:
    """Require an organizer account. Admins are accepted as well."""
    if principal["role"] not in ("club", "admin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Club access required"
        )
    return principal


async def check_service_health() -> Dict[str, Any]:
    """
    Check the health of all service dependencies.

    Returns:
        Dictionary with health status of all components
    """
    health_status = {
        "database": "unknown",
        "redis": "unknown",
        "overall": "unknown"
    }

    health_status["database"] = "healthy" if db_manager.health_check() else "unhealthy"

    try:
        redis_healthy = await redis_manager.health_check()
        health_status["redis"] = "healthy" if redis_healthy else "unhealthy"
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        health_status["redis"] = "unhealthy"

    # Redis only carries side effects; the service stays usable without it
    if health_status["database"] == "healthy":
        health_status["overall"] = "healthy" if health_status["redis"] == "healthy" else "degraded"
    else:
        health_status["overall"] = "unhealthy"

    return health_status
