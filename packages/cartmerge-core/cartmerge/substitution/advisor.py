"""Heuristic substitution advisor: site search plus scoring, no LLM."""

from __future__ import annotations

from loguru import logger

from cartmerge.config import Thresholds
from cartmerge.models.cart import CartItem, SubstitutionProposal
from cartmerge.runner.messaging import ExtractionClient
from cartmerge.substitution.heuristics import rank_substitutes, search_query


class HeuristicSubstitutionAdvisor:
    """Search the site for each item and propose the best-scoring candidate."""

    def __init__(
        self,
        client: ExtractionClient,
        thresholds: Thresholds | None = None,
        max_candidates: int = 10,
    ) -> None:
        self._client = client
        self._thresholds = thresholds or Thresholds()
        self._max_candidates = max_candidates

    def is_available(self) -> bool:
        return True

    async def propose(self, tab_id: int, item: CartItem) -> SubstitutionProposal | None:
        query = search_query(item)
        candidates = await self._client.search_products(tab_id, query, self._max_candidates)
        ranked = rank_substitutes(
            item,
            candidates,
            max_increase_percent=self._thresholds.max_price_increase_percent,
            store_brand_bonus_percent=self._thresholds.store_brand_bonus_percent,
        )
        if not ranked:
            logger.info(f"No acceptable substitute for {item.name!r} ({len(candidates)} candidates)")
            return None
        best = ranked[0]
        logger.debug(f"Substitute for {item.name!r}: {best.substitute.name!r} score={best.score}")
        return best
