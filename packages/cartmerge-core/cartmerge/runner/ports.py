"""Tab control and substitution ports used by the orchestrator."""

from __future__ import annotations

from typing import Protocol

from cartmerge.models.base import CamelModel
from cartmerge.models.cart import CartItem, SubstitutionProposal


class TabInfo(CamelModel):
    id: int
    url: str | None = None
    title: str | None = None
    loading: bool = False


class TabsPort(Protocol):
    """Control over the browser tab the run is bound to."""

    async def get(self, tab_id: int) -> TabInfo | None: ...
    async def navigate(self, tab_id: int, url: str) -> None: ...
    async def wait_for_load(self, tab_id: int, timeout: float) -> None: ...


class SubstitutionAdvisor(Protocol):
    """Proposes a replacement for an item that cannot be bought as-is."""

    def is_available(self) -> bool: ...

    async def propose(self, tab_id: int, item: CartItem) -> SubstitutionProposal | None: ...
