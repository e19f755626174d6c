"""Extraction port: request/response messaging with the page in a tab.

``MessagingPort`` is what the host provides (a content script bridge, a
browser driver...). ``MessageRouter`` is an in-process implementation that
dispatches actions to registered handlers with JSON Schema checks, used by
fixtures and tests. ``ExtractionClient`` is what the orchestrator talks
to: typed calls with a timeout and pydantic parsing of every response.
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, Union

import jsonschema
from pydantic import Field, TypeAdapter, ValidationError

from cartmerge.models.base import CamelModel
from cartmerge.models.cart import CartItem, ProductInfo
from cartmerge.models.orders import OrderDetail, OrderSummary, ReorderMode, ReorderResult
from cartmerge.models.slots import DeliverySlot
from cartmerge.runner.errors import ExtractionError, PortCallError, PortTimeoutError
from cartmerge.utils.hashing import generate_request_id


class MessageAction(str, Enum):
    login_check = "login.check"
    order_extract_history = "order.extractHistory"
    order_extract_detail = "order.extractDetail"
    order_reorder = "order.reorder"
    cart_scan = "cart.scan"
    slots_extract = "slots.extract"
    search_products = "search.products"


class PortRequest(CamelModel):
    id: str = Field(default_factory=generate_request_id)
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)


class PortError(CamelModel):
    code: str = "UNKNOWN"
    message: str = ""


class PortResponse(CamelModel):
    id: str
    success: bool
    data: Any = None
    error: PortError | None = None

    @classmethod
    def ok(cls, request: PortRequest, data: Any) -> PortResponse:
        return cls(id=request.id, success=True, data=data)

    @classmethod
    def fail(cls, request: PortRequest, code: str, message: str) -> PortResponse:
        return cls(id=request.id, success=False, error=PortError(code=code, message=message))


class MessagingPort(Protocol):
    async def send_to_tab(self, tab_id: int, request: PortRequest) -> PortResponse: ...


class LoginStatus(CamelModel):
    is_logged_in: bool
    user_name: str | None = None


# --- Payload / result schemas ---

_ORDER_ID = {"type": "string", "minLength": 1}

PAYLOAD_SCHEMAS: dict[MessageAction, dict[str, Any]] = {
    MessageAction.login_check: {"type": "object"},
    MessageAction.order_extract_history: {
        "type": "object",
        "properties": {"limit": {"type": "integer", "minimum": 1}},
    },
    MessageAction.order_extract_detail: {
        "type": "object",
        "required": ["orderId"],
        "properties": {"orderId": _ORDER_ID},
    },
    MessageAction.order_reorder: {
        "type": "object",
        "required": ["orderId", "mode"],
        "properties": {
            "orderId": _ORDER_ID,
            "mode": {"enum": [m.value for m in ReorderMode]},
        },
    },
    MessageAction.cart_scan: {
        "type": "object",
        "properties": {"includeOutOfStock": {"type": "boolean"}},
    },
    MessageAction.slots_extract: {"type": "object"},
    MessageAction.search_products: {
        "type": "object",
        "required": ["query"],
        "properties": {
            "query": {"type": "string", "minLength": 1},
            "maxResults": {"type": "integer", "minimum": 1},
        },
    },
}


def _list_result(key: str) -> dict[str, Any]:
    return {
        "type": "object",
        "required": [key],
        "properties": {key: {"type": "array", "items": {"type": "object"}}},
    }


RESULT_SCHEMAS: dict[MessageAction, dict[str, Any]] = {
    MessageAction.login_check: {
        "type": "object",
        "required": ["isLoggedIn"],
        "properties": {"isLoggedIn": {"type": "boolean"}},
    },
    MessageAction.order_extract_history: _list_result("orders"),
    MessageAction.order_extract_detail: _list_result("items"),
    MessageAction.order_reorder: {"type": "object"},
    MessageAction.cart_scan: _list_result("items"),
    MessageAction.slots_extract: _list_result("slots"),
    MessageAction.search_products: _list_result("products"),
}


Handler = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]


class PortRejection(Exception):
    """Raised by a router handler to answer with ``success: false``."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


class MessageRouter:
    """In-process MessagingPort: routes each action to a registered handler."""

    def __init__(self) -> None:
        self._routes: dict[str, _Route] = {}
        self.sent: list[tuple[int, PortRequest]] = []

    def register(
        self,
        action: MessageAction | str,
        handler: Handler,
        payload_schema: dict[str, Any] | None = None,
        result_schema: dict[str, Any] | None = None,
    ) -> None:
        """Register a handler. Built-in schemas apply to known actions unless overridden."""
        key = _action_key(action)
        known = MessageAction(key) if key in _KNOWN_ACTIONS else None
        if payload_schema is None and known is not None:
            payload_schema = PAYLOAD_SCHEMAS[known]
        if result_schema is None and known is not None:
            result_schema = RESULT_SCHEMAS[known]
        self._routes[key] = _Route(handler, payload_schema, result_schema)

    def has(self, action: MessageAction | str) -> bool:
        return _action_key(action) in self._routes

    def actions(self) -> list[str]:
        return list(self._routes)

    def requests_for(self, action: MessageAction | str) -> list[PortRequest]:
        key = _action_key(action)
        return [req for _, req in self.sent if req.action == key]

    async def send_to_tab(self, tab_id: int, request: PortRequest) -> PortResponse:
        self.sent.append((tab_id, request))
        route = self._routes.get(request.action)
        if route is None:
            return PortResponse.fail(request, "UNKNOWN_ACTION", f"No handler for {request.action}")

        errors = route.payload_errors(request.payload)
        if errors:
            return PortResponse.fail(request, "INVALID_REQUEST", "; ".join(errors))

        try:
            result = route.handler(request.payload)
            if inspect.isawaitable(result):
                result = await result
        except PortRejection as rej:
            return PortResponse.fail(request, rej.code, rej.message)

        errors = route.result_errors(result)
        if errors:
            return PortResponse.fail(request, "INVALID_DATA", "; ".join(errors))
        return PortResponse.ok(request, result)


class _Route:
    __slots__ = ("handler", "_payload", "_result")

    def __init__(
        self,
        handler: Handler,
        payload_schema: dict[str, Any] | None,
        result_schema: dict[str, Any] | None,
    ):
        self.handler = handler
        self._payload = jsonschema.Draft7Validator(payload_schema) if payload_schema else None
        self._result = jsonschema.Draft7Validator(result_schema) if result_schema else None

    def payload_errors(self, payload: Any) -> list[str]:
        if self._payload is None:
            return []
        return [err.message for err in self._payload.iter_errors(payload)]

    def result_errors(self, result: Any) -> list[str]:
        if self._result is None:
            return []
        return [err.message for err in self._result.iter_errors(result)]


_KNOWN_ACTIONS = {a.value for a in MessageAction}


def _action_key(action: MessageAction | str) -> str:
    return action.value if isinstance(action, MessageAction) else action


# --- Typed client ---

_orders_adapter = TypeAdapter(list[OrderSummary])
_cart_adapter = TypeAdapter(list[CartItem])
_slots_adapter = TypeAdapter(list[DeliverySlot])
_products_adapter = TypeAdapter(list[ProductInfo])


class ExtractionClient:
    """Typed calls over a MessagingPort.

    Every call is bounded by ``operation_timeout``. Failures surface as
    ``CartRunError`` subclasses: a timeout as ``PortTimeoutError``, a
    rejected request as ``PortCallError``, an unparseable answer as
    ``ExtractionError``.
    """

    def __init__(self, port: MessagingPort, operation_timeout: float = 30.0) -> None:
        self._port = port
        self._timeout = operation_timeout

    async def call(self, tab_id: int, action: MessageAction, payload: dict[str, Any] | None = None) -> Any:
        request = PortRequest(action=action.value, payload=payload or {})
        try:
            response = await asyncio.wait_for(
                self._port.send_to_tab(tab_id, request), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            raise PortTimeoutError(
                f"{action.value} timed out after {self._timeout:g}s"
            ) from None
        if not response.success:
            error = response.error or PortError()
            raise PortCallError(action.value, error.code, error.message)
        return response.data

    async def check_login(self, tab_id: int) -> LoginStatus:
        data = await self.call(tab_id, MessageAction.login_check)
        return _parse(MessageAction.login_check, lambda: LoginStatus.model_validate(data))

    async def extract_history(self, tab_id: int, limit: int) -> list[OrderSummary]:
        data = await self.call(tab_id, MessageAction.order_extract_history, {"limit": limit})
        return _parse(MessageAction.order_extract_history,
                      lambda: _orders_adapter.validate_python(_field(data, "orders")))

    async def extract_detail(self, tab_id: int, order_id: str) -> OrderDetail:
        data = await self.call(tab_id, MessageAction.order_extract_detail, {"orderId": order_id})
        return _parse(MessageAction.order_extract_detail,
                      lambda: OrderDetail.model_validate({"orderId": order_id, **data}))

    async def reorder(self, tab_id: int, order_id: str, mode: ReorderMode) -> ReorderResult:
        data = await self.call(
            tab_id, MessageAction.order_reorder, {"orderId": order_id, "mode": mode.value}
        )
        return _parse(MessageAction.order_reorder, lambda: ReorderResult.model_validate(data or {}))

    async def scan_cart(self, tab_id: int, include_out_of_stock: bool = True) -> list[CartItem]:
        data = await self.call(
            tab_id, MessageAction.cart_scan, {"includeOutOfStock": include_out_of_stock}
        )
        return _parse(MessageAction.cart_scan,
                      lambda: _cart_adapter.validate_python(_field(data, "items")))

    async def extract_slots(self, tab_id: int) -> list[DeliverySlot]:
        data = await self.call(tab_id, MessageAction.slots_extract)
        return _parse(MessageAction.slots_extract,
                      lambda: _slots_adapter.validate_python(_field(data, "slots")))

    async def search_products(self, tab_id: int, query: str, max_results: int = 10) -> list[ProductInfo]:
        data = await self.call(
            tab_id, MessageAction.search_products, {"query": query, "maxResults": max_results}
        )
        return _parse(MessageAction.search_products,
                      lambda: _products_adapter.validate_python(_field(data, "products")))


def _field(data: Any, key: str) -> Any:
    if not isinstance(data, dict) or key not in data:
        raise ExtractionError(f"response has no '{key}' field")
    return data[key]


def _parse(action: MessageAction, build: Callable[[], Any]) -> Any:
    try:
        return build()
    except ValidationError as exc:
        raise ExtractionError(
            f"{action.value} returned malformed data: {exc.error_count()} validation error(s)"
        ) from exc
    except TypeError as exc:
        raise ExtractionError(f"{action.value} returned malformed data: {exc}") from exc
