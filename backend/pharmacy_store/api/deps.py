"""
API dependencies
"""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from pharmacy_store.core.security import Actor, get_actor_from_token

optional_bearer = HTTPBearer(auto_error=False)


async def get_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
) -> Actor:
    """Acting identity; guest when no valid token is presented."""
    return get_actor_from_token(credentials.credentials if credentials else None)


async def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    """Require an admin token"""
    if not actor.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return actor


async def require_customer(actor: Actor = Depends(get_actor)) -> Actor:
    """Require any valid token"""
    if not actor.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return actor
