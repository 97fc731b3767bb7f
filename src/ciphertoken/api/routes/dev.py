"""Development-only endpoints.

Expose server-side decrypted balances and manual settlement. Only mounted
outside production.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ciphertoken.api.deps import get_reconciler
from ciphertoken.crypto import from_hex, to_hex
from ciphertoken.errors import LedgerError, ReconciliationError, RequestNotFoundError
from ciphertoken.services.reconciler import BalanceReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_hex(value: str, name: str) -> bytes:
    try:
        return from_hex(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: expected hex")


@router.get("/balances/{user_index}")
async def get_balance(user_index: str, reconciler: BalanceReconciler = Depends(get_reconciler)):
    """Decrypted balance for a user index."""
    index = _parse_hex(user_index, "user index")
    try:
        balance = await reconciler.read_balance(index)
    except LedgerError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except ReconciliationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"user_index": to_hex(index), "balance": str(balance)}


@router.post("/deposits/{request_id}/settle")
async def settle_deposit(request_id: str, reconciler: BalanceReconciler = Depends(get_reconciler)):
    """Settle a deposit request manually."""
    rid = _parse_hex(request_id, "request id")
    try:
        result = await reconciler.settle_deposit(rid)
    except RequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReconciliationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LedgerError as e:
        logger.error(f"Manual settlement of {request_id} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    if result is None:
        return {"request_id": to_hex(rid), "settled": False, "message": "Already completed"}
    return {
        "request_id": result.request_id,
        "settled": True,
        "tx_hash": result.tx_hash,
        "balances": {index: str(value) for index, value in result.balances.items()},
    }
