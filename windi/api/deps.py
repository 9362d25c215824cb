import hmac
import logging
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from windi.config import settings
from windi.database import get_db
from windi.services.mercadopago_service import MercadoPagoService


logger = logging.getLogger(__name__)


def get_gateway() -> MercadoPagoService:
    """Payment gateway client (overridden in tests)."""
    return MercadoPagoService()


async def require_admin(
    x_admin_key: Annotated[Optional[str], Header()] = None,
) -> None:
    """
    Guard for administrative endpoints.

    Admin endpoints refuse with 503 while ADMIN_API_KEY is unset.
    """
    if not settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured"
        )
    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        logger.warning("Rejected admin request with invalid X-Admin-Key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key"
        )


async def get_reviewer_id(
    x_reviewer_id: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    return x_reviewer_id.strip() if x_reviewer_id and x_reviewer_id.strip() else None


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
Gateway = Annotated[MercadoPagoService, Depends(get_gateway)]
ReviewerId = Annotated[Optional[str], Depends(get_reviewer_id)]
AdminOnly = Depends(require_admin)
