"""
Actor identity from bearer tokens

Tokens are issued by the authentication service; this module only decodes
them to attribute history entries to an actor. Unauthenticated callers act as
"guest".
"""
from dataclasses import dataclass
from typing import Optional

from jose import JWTError, jwt

from pharmacy_store.core.config import settings

GUEST_ACTOR = "guest"


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation."""
    name: str
    role: str = "client"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_authenticated(self) -> bool:
        return self.role != "guest"

    def owns(self, customer_email: Optional[str]) -> bool:
        """True when this actor is the customer an order was placed for."""
        if not self.is_authenticated or not customer_email:
            return False
        return self.name.lower() == customer_email.lower()


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def get_actor_from_token(token: Optional[str]) -> Actor:
    """Resolve the acting identity, falling back to guest on any bad token."""
    if not token:
        return Actor(name=GUEST_ACTOR, role="guest")

    payload = decode_token(token)
    if not payload or payload.get("type", "access") != "access":
        return Actor(name=GUEST_ACTOR, role="guest")

    name = payload.get("email") or f"user:{payload.get('sub')}"
    return Actor(name=name, role=payload.get("role", "client"))
