"""Poller lifecycle endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ciphertoken.api.deps import get_services
from ciphertoken.services.factory import Services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/status")
async def status(services: Services = Depends(get_services)):
    state = services.poller.state
    return {
        "running": state.running,
        "last_processed_ledger": state.last_processed_ledger,
        "last_processed_event_id": state.last_processed_event_id,
    }


@router.post("/start")
async def start_poller(services: Services = Depends(get_services)):
    """Start the event poller."""
    try:
        await services.poller.start()
    except Exception as e:
        logger.error(f"Failed to start event poller: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"message": "Event poller started", "running": services.poller.running}


@router.post("/stop")
async def stop_poller(services: Services = Depends(get_services)):
    """Stop the event poller after its current iteration."""
    services.poller.stop()
    return {"message": "Event poller stopped", "running": services.poller.running}
