"""Health and info endpoints."""

from fastapi import APIRouter, Depends

from ciphertoken.api.deps import get_services
from ciphertoken.config import VERSION
from ciphertoken.services.factory import Services

router = APIRouter()


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Health check with poller status and redacted configuration."""
    return {
        "status": "healthy",
        "service": "ciphertoken",
        "poller": services.poller.get_status(),
        "config": services.settings.get_safe_dict(),
    }


@router.get("/info")
async def info(services: Services = Depends(get_services)):
    settings = services.settings
    return {
        "name": "ciphertoken",
        "description": "Encrypted balance reconciliation server",
        "version": VERSION,
        "network": settings.network_name,
        "contract_id": settings.contract_id,
    }
