"""Order management primitives for placing and tracking Deribit orders."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Protocol

OrderSide = Literal["buy", "sell"]
OrderType = Literal["limit", "market"]


class TradingApi(Protocol):
    """Subset of :class:`DeribitClient` used for order management."""

    def buy(self, instrument: str, amount: float, price: Optional[float] = None, **options: Any) -> Dict[str, Any]:
        ...

    def sell(self, instrument: str, amount: float, price: Optional[float] = None, **options: Any) -> Dict[str, Any]:
        ...

    def edit_order(self, order_id: str, amount: float, price: Optional[float] = None) -> Dict[str, Any]:
        ...

    def cancel_order(self, order_id: str) -> Dict[str, Any]:
        ...

    def get_open_orders(self, instrument: str) -> list:
        ...


@dataclass
class OrderRequest:
    """A request to place an order on Deribit."""

    instrument: str
    side: OrderSide
    amount: float
    price: Optional[float] = None
    order_type: OrderType = "limit"
    label: Optional[str] = None


@dataclass
class OrderState:
    """Tracks the lifecycle of a submitted order."""

    order_id: str
    request: OrderRequest
    status: str = "open"
    filled_amount: float = 0.0
    raw: Dict[str, Any] = field(default_factory=dict)


class OrderManager:
    """Places, modifies, and cancels orders and keeps their last known state."""

    def __init__(self, client: TradingApi, logger: Optional[logging.Logger] = None) -> None:
        self.client = client
        self.logger = logger or logging.getLogger(__name__)
        self._orders: Dict[str, OrderState] = {}

    def place_order(self, request: OrderRequest) -> OrderState:
        """Submit ``request`` and record the exchange's view of the order."""

        self._validate(request)
        place = self.client.buy if request.side == "buy" else self.client.sell
        options: Dict[str, Any] = {"order_type": request.order_type}
        if request.label:
            options["label"] = request.label
        result = place(request.instrument, request.amount, request.price, **options)

        order = self._order_payload(result)
        state = OrderState(order_id=str(order.get("order_id", "")), request=request)
        self._apply(state, order)
        self._orders[state.order_id] = state
        self.logger.info(
            "Placed %s order %s on %s", request.side, state.order_id, request.instrument,
            extra={"event": "order_placed", "order_id": state.order_id, "instrument": request.instrument},
        )
        return state

    def modify_order(self, order_id: str, amount: float, price: Optional[float] = None) -> OrderState:
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")
        result = self.client.edit_order(order_id, amount, price)
        order = self._order_payload(result)

        state = self._orders.get(order_id)
        if state is None:
            state = OrderState(order_id=order_id, request=self._request_from(order))
            self._orders[order_id] = state
        state.request.amount = amount
        if price is not None:
            state.request.price = price
        self._apply(state, order)
        self.logger.info("Modified order %s", order_id, extra={"event": "order_modified", "order_id": order_id})
        return state

    def cancel_order(self, order_id: str) -> OrderState:
        result = self.client.cancel_order(order_id)
        order = self._order_payload(result)
        state = self._orders.get(order_id)
        if state is None:
            state = OrderState(order_id=order_id, request=self._request_from(order))
            self._orders[order_id] = state
        self._apply(state, order)
        if state.status == "open":
            state.status = "cancelled"
        self.logger.info("Cancelled order %s", order_id, extra={"event": "order_cancelled", "order_id": order_id})
        return state

    def open_orders(self, instrument: str) -> List[OrderState]:
        """Refresh and return the open orders the exchange reports for ``instrument``."""

        states = []
        for order in self.client.get_open_orders(instrument):
            order_id = str(order.get("order_id", ""))
            state = self._orders.get(order_id)
            if state is None:
                state = OrderState(order_id=order_id, request=self._request_from(order))
                self._orders[order_id] = state
            self._apply(state, order)
            states.append(state)
        return states

    def list_orders(self) -> List[OrderState]:
        """Return the current known orders."""

        return list(self._orders.values())

    def get_order(self, order_id: str) -> OrderState:
        """Fetch a single order by ID."""

        return self._orders[order_id]

    def _validate(self, request: OrderRequest) -> None:
        if request.amount <= 0:
            raise ValueError(f"amount must be positive, got {request.amount}")
        if request.order_type == "limit" and request.price is None:
            raise ValueError("limit orders require a price")

    def _order_payload(self, result: Any) -> Dict[str, Any]:
        # private/buy, private/sell and private/edit wrap the order; private/cancel returns it bare.
        if isinstance(result, dict) and isinstance(result.get("order"), dict):
            return result["order"]
        return result if isinstance(result, dict) else {}

    def _apply(self, state: OrderState, order: Dict[str, Any]) -> None:
        state.raw = order
        status = order.get("order_state")
        if status:
            state.status = status
        filled = order.get("filled_amount")
        if filled is not None:
            state.filled_amount = float(filled)

    def _request_from(self, order: Dict[str, Any]) -> OrderRequest:
        return OrderRequest(
            instrument=str(order.get("instrument_name", "")),
            side="sell" if order.get("direction") == "sell" else "buy",
            amount=float(order.get("amount") or 0.0),
            price=order.get("price") if isinstance(order.get("price"), (int, float)) else None,
            order_type="market" if order.get("order_type") == "market" else "limit",
            label=order.get("label") or None,
        )


__all__ = ["OrderManager", "OrderRequest", "OrderState", "TradingApi"]
