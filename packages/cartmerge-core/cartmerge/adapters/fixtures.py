"""Fixture-backed ports: replay a store from JSON files instead of a browser.

A fixture directory holds::

    site.json            {"tab": {"id": 1, "url": ...}, "isLoggedIn": true, "userName": ...}
    orders.json          {"orders": [OrderSummary, ...]}
    order_details.json   {"<orderId>": {"items": [OrderItem, ...]}, ...}
    cart.json            {"items": [CartItem, ...]}          (cart after reordering)
    slots.json           {"slots": [DeliverySlot, ...]}
    products.json        {"products": [ProductInfo, ...]}    (search catalogue, optional)

Keys use the same camelCase shape the extraction port returns.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from cartmerge.cart.diff import normalize_name
from cartmerge.runner.messaging import MessageAction, MessageRouter, PortRejection
from cartmerge.runner.ports import TabInfo

DEFAULT_TAB_URL = "https://www.auchan.pt/pt/"


class FixtureTabs:
    """In-memory TabsPort. Navigation just records the URL."""

    def __init__(self, tabs: list[TabInfo] | None = None) -> None:
        self._tabs: dict[int, TabInfo] = {t.id: t for t in tabs or []}
        self.navigations: list[tuple[int, str]] = []

    def add_tab(self, tab: TabInfo) -> None:
        self._tabs[tab.id] = tab

    async def get(self, tab_id: int) -> TabInfo | None:
        return self._tabs.get(tab_id)

    async def navigate(self, tab_id: int, url: str) -> None:
        if tab_id not in self._tabs:
            raise ConnectionError(f"Tab {tab_id} is closed")
        self._tabs[tab_id] = self._tabs[tab_id].model_copy(update={"url": url, "loading": False})
        self.navigations.append((tab_id, url))

    async def wait_for_load(self, tab_id: int, timeout: float) -> None:
        if tab_id not in self._tabs:
            raise ConnectionError(f"Tab {tab_id} is closed")


class FixtureSite:
    """Serves extraction requests from a fixture directory."""

    def __init__(self, directory: Path):
        self.dir = Path(directory)
        site = self._load("site.json", {})
        self.tab = TabInfo.model_validate(site.get("tab") or {"id": 1, "url": DEFAULT_TAB_URL})
        self.logged_in = bool(site.get("isLoggedIn", True))
        self.user_name = site.get("userName")
        self.orders = self._load("orders.json", {"orders": []})["orders"]
        self.details = self._load("order_details.json", {})
        self.cart = self._load("cart.json", {"items": []})["items"]
        self.slots = self._load("slots.json", {"slots": []})["slots"]
        self.products = self._load("products.json", {"products": []})["products"]
        self.reorders: list[tuple[str, str]] = []

    def _load(self, name: str, default: Any) -> Any:
        path = self.dir / name
        if not path.exists():
            return default
        with open(path) as f:
            return json.load(f)

    # --- Handlers ---

    def login_check(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"isLoggedIn": self.logged_in, "userName": self.user_name}

    def extract_history(self, payload: dict[str, Any]) -> dict[str, Any]:
        limit = payload.get("limit", len(self.orders))
        return {"orders": self.orders[:limit]}

    def extract_detail(self, payload: dict[str, Any]) -> dict[str, Any]:
        order_id = payload["orderId"]
        if order_id not in self.details:
            raise PortRejection("ELEMENT_NOT_FOUND", f"No detail page for order {order_id}")
        return {"orderId": order_id, "items": self.details[order_id]["items"]}

    def reorder(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.reorders.append((payload["orderId"], payload["mode"]))
        return {"success": True, "buttonClicked": True}

    def scan_cart(self, payload: dict[str, Any]) -> dict[str, Any]:
        items = self.cart
        if not payload.get("includeOutOfStock", True):
            items = [i for i in items if i.get("availability") != "out-of-stock"]
        return {"items": items}

    def extract_slots(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"slots": self.slots}

    def search_products(self, payload: dict[str, Any]) -> dict[str, Any]:
        words = set(normalize_name(payload["query"]).split())
        hits = [
            p for p in self.products
            if words & set(normalize_name(p.get("name", "")).split())
        ]
        return {"products": hits[: payload.get("maxResults", 10)]}

    def router(self) -> MessageRouter:
        router = MessageRouter()
        router.register(MessageAction.login_check, self.login_check)
        router.register(MessageAction.order_extract_history, self.extract_history)
        router.register(MessageAction.order_extract_detail, self.extract_detail)
        router.register(MessageAction.order_reorder, self.reorder)
        router.register(MessageAction.cart_scan, self.scan_cart)
        router.register(MessageAction.slots_extract, self.extract_slots)
        router.register(MessageAction.search_products, self.search_products)
        return router

    def tabs(self) -> FixtureTabs:
        return FixtureTabs([self.tab])


def load_fixture_ports(directory: Path) -> tuple[FixtureSite, MessageRouter, FixtureTabs]:
    """Build messaging and tab ports backed by the fixture directory."""
    if not Path(directory).is_dir():
        raise FileNotFoundError(f"Fixture directory not found: {directory}")
    site = FixtureSite(directory)
    return site, site.router(), site.tabs()
