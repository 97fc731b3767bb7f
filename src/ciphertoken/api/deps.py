"""Request dependencies."""

from fastapi import HTTPException, Request

from ciphertoken.services.factory import Services
from ciphertoken.services.reconciler import BalanceReconciler


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_reconciler(request: Request) -> BalanceReconciler:
    """Reconciler, or 503 when the server has no contract credentials."""
    reconciler = get_services(request).reconciler
    if reconciler is None:
        raise HTTPException(status_code=503, detail="Reconciliation is not configured")
    return reconciler
