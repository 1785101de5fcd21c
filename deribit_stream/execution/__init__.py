"""Execution layer for order management and the stream operator loop."""

from .order_manager import OrderManager, OrderRequest, OrderState
from .orchestrator import BookStreamOrchestrator

__all__ = [
    "BookStreamOrchestrator",
    "OrderManager",
    "OrderRequest",
    "OrderState",
]
