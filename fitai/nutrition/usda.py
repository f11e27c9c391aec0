"""USDA FoodData Central search client.

Only the free-text ``foods/search`` endpoint is used: search results
already carry per-100 g nutrients, so one call per food is enough.  A
failed or unconfigured lookup returns ``None`` and the enrichment
pipeline falls back to static estimates.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from fitai.ai.retry import Deadline
from fitai.nutrition.reconcile import expected_calories
from fitai.services.cache import TTLCache, make_key

logger = logging.getLogger(__name__)

USDA_SEARCH_URL = "https://api.nal.usda.gov/fdc/v1/foods/search"
USDA_DATA_TYPES = "Foundation,SR Legacy,Branded"
SEARCH_CACHE_TTL_SECONDS = 24 * 60 * 60

NUTRIENT_ENERGY = 1008  # kcal
NUTRIENT_PROTEIN = 1003
NUTRIENT_CARBS = 1005  # carbohydrate, by difference
NUTRIENT_FAT = 1004


@dataclass(frozen=True, slots=True)
class FoodMatch:
    """Per-100 g nutrients of the best database match for a query."""

    fdc_id: int
    description: str
    calories: float
    protein: float
    carbs: float
    fats: float
    confidence: float


def match_confidence(query: str, description: str) -> float:
    """Name-similarity score in ``[0, 1]`` between a query and a description.

    1.0 when the description contains the whole query, otherwise the
    fraction of query words that overlap some description word.
    """
    normalized_query = query.lower().strip()
    normalized_desc = description.lower().strip()
    if not normalized_query:
        return 0.0
    if normalized_query in normalized_desc:
        return 1.0

    query_words = normalized_query.split()
    desc_words = normalized_desc.replace(",", " ").split()
    matched = [qw for qw in query_words if any(qw in dw or dw in qw for dw in desc_words)]
    return len(matched) / len(query_words)


def extract_nutrients(food: dict[str, Any]) -> dict[str, float]:
    """Map ``foodNutrients`` of a search hit to calories/protein/carbs/fats.

    Energy missing from the record is derived from the macros.
    """
    values: dict[int, float] = {}
    for nutrient in food.get("foodNutrients") or []:
        nutrient_id = nutrient.get("nutrientId")
        value = nutrient.get("value")
        if isinstance(nutrient_id, int) and isinstance(value, (int, float)):
            values[nutrient_id] = float(value)

    protein = values.get(NUTRIENT_PROTEIN, 0.0)
    carbs = values.get(NUTRIENT_CARBS, 0.0)
    fats = values.get(NUTRIENT_FAT, 0.0)
    calories = values.get(NUTRIENT_ENERGY)
    if calories is None:
        calories = float(expected_calories(protein, carbs, fats))
    return {"calories": calories, "protein": protein, "carbs": carbs, "fats": fats}


class USDAClient:
    """Async client for the FoodData Central search API.

    Args:
        api_key: FoodData Central key; without one every lookup is skipped.
        http_client: Shared ``httpx.AsyncClient`` (injectable for tests).
        timeout: Request timeout in seconds.
        cache: Search-result cache; a 24 h in-process cache by default.
    """

    def __init__(
        self,
        api_key: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        cache: TTLCache[list[dict[str, Any]]] | None = None,
    ) -> None:
        self._api_key = api_key
        self._client = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None
        self._timeout = timeout
        self._cache = cache or TTLCache(ttl=SEARCH_CACHE_TTL_SECONDS, name="usda")

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def search(
        self,
        query: str,
        page_size: int = 5,
        deadline: Deadline | None = None,
    ) -> list[dict[str, Any]]:
        """Search foods by free text; an empty list on any failure.

        The request is bounded by the client timeout and by what is left
        of *deadline*; once it has expired no request is made.
        """
        if not self.enabled or not query.strip():
            return []

        key = make_key("usda", query.lower().strip(), str(page_size))
        cached = await self._cache.get(key)
        if cached is not None:
            return cached.value

        timeout = deadline.cap(self._timeout) if deadline is not None else self._timeout
        if timeout <= 0:
            logger.info(
                "Skipping USDA search, request deadline expired",
                extra={"event": "usda_skipped", "query": query},
            )
            return []

        params = {
            "api_key": self._api_key,
            "query": query,
            "dataType": USDA_DATA_TYPES,
            "pageSize": str(page_size),
        }
        try:
            response = await asyncio.wait_for(
                self._client.get(USDA_SEARCH_URL, params=params, timeout=timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "USDA search timed out after %.1fs",
                timeout,
                extra={"event": "usda_timeout", "query": query},
            )
            return []
        except httpx.HTTPError as exc:
            logger.warning(
                "USDA search failed: %s",
                type(exc).__name__,
                extra={"event": "usda_error", "query": query},
            )
            return []

        if response.status_code != 200:
            logger.warning(
                "USDA search returned HTTP %d",
                response.status_code,
                extra={"event": "usda_error", "query": query, "status": response.status_code},
            )
            return []

        try:
            data = response.json()
        except ValueError:
            logger.warning("USDA returned invalid JSON", extra={"event": "usda_error", "query": query})
            return []

        foods = data.get("foods") if isinstance(data, dict) else None
        result = [f for f in foods if isinstance(f, dict)] if isinstance(foods, list) else []
        await self._cache.set(key, result)
        return result

    async def lookup_with_confidence(
        self,
        query: str,
        min_confidence: float = 0.6,
        deadline: Deadline | None = None,
    ) -> FoodMatch | None:
        """Best-scoring search hit for *query*, or ``None`` below *min_confidence*."""
        results = await self.search(query, deadline=deadline)

        best: dict[str, Any] | None = None
        best_confidence = 0.0
        for food in results:
            description = food.get("description")
            if not isinstance(description, str):
                continue
            confidence = match_confidence(query, description)
            if confidence > best_confidence:
                best, best_confidence = food, confidence

        if best is None or best_confidence < min_confidence:
            logger.debug(
                "No confident USDA match (best %.2f)",
                best_confidence,
                extra={"event": "usda_no_match", "query": query},
            )
            return None

        nutrients = extract_nutrients(best)
        return FoodMatch(
            fdc_id=int(best.get("fdcId") or 0),
            description=best["description"],
            confidence=best_confidence,
            **nutrients,
        )
