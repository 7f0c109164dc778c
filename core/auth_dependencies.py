"""
FastAPI Authentication Dependencies for Microservices

Identity arrives from the gateway as trusted headers; these dependencies
only extract it. Token verification happens upstream.
"""

from fastapi import Header, HTTPException, status, Request
from typing import Optional
from dataclasses import dataclass
import logging
import os

logger = logging.getLogger(__name__)

INTERNAL_SERVICE_SECRET = os.getenv(
    "INTERNAL_SERVICE_SECRET",
    "dev-internal-secret-change-in-production"
)

INTERNAL_SERVICE_ID = "internal-service"

VALID_ROLES = ("farmer", "consumer", "admin")


@dataclass
class Actor:
    """Identity of the caller performing an operation"""
    user_id: str
    role: str = "consumer"

    @property
    def is_internal(self) -> bool:
        return self.user_id == INTERNAL_SERVICE_ID


async def require_actor(
    request: Request,
    user_id: Optional[str] = Header(None, alias="user-id"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
    x_internal_service: Optional[str] = Header(None, alias="X-Internal-Service"),
    x_internal_service_secret: Optional[str] = Header(None, alias="X-Internal-Service-Secret"),
) -> Actor:
    """
    Resolve the calling actor from identity headers.

    Priority:
    1. Internal service (X-Internal-Service + X-Internal-Service-Secret)
    2. User headers (X-User-Id or user-id, optional X-User-Role)

    Raises:
        HTTPException 401: no identity supplied
    """
    if x_internal_service == "true" and x_internal_service_secret:
        if x_internal_service_secret == INTERNAL_SERVICE_SECRET:
            logger.debug(f"Internal service request to {request.url.path}")
            return Actor(user_id=INTERNAL_SERVICE_ID, role="admin")
        client_host = request.client.host if request.client else "unknown"
        logger.warning(f"Invalid internal service secret from {client_host}")

    user_id_value = x_user_id or user_id
    if user_id_value:
        role = (x_user_role or "consumer").lower()
        if role not in VALID_ROLES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown role: {x_user_role}"
            )
        return Actor(user_id=user_id_value, role=role)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="User authentication required"
    )


def can_manage_stock(actor: Actor) -> bool:
    """Farmers, admins and internal services may change stock and status"""
    return actor.is_internal or actor.role in ("farmer", "admin")


__all__ = [
    "Actor",
    "require_actor",
    "can_manage_stock",
    "INTERNAL_SERVICE_ID",
]
