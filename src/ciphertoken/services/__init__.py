"""Settlement and request services for the encrypted token contract."""

from ciphertoken.services.factory import Services, build_services, register_handlers
from ciphertoken.services.reconciler import BalanceReconciler
from ciphertoken.services.requests import RequestService
from ciphertoken.services.token_contract import TokenContractClient

__all__ = [
    "Services",
    "build_services",
    "register_handlers",
    "BalanceReconciler",
    "RequestService",
    "TokenContractClient",
]
