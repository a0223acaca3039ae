"""
Matching Assist

Ranks open found items against a lost item with help from an LLM.

Flow:
1. Load the open found items (the candidates)
2. Pre-rank them with similarity_score() and keep the best N so the prompt
   stays within the model's context window
3. Ask the model which candidates match, at a low temperature
4. Strip code fences, parse JSON, keep only ids that were offered

The model can only narrow the offered set; it never introduces items.
Any LLM or parse failure is logged and yields an empty result.

Environment Variables:
    GEMINI_API_KEY: Google AI key; matching is disabled without it
    FINDITNOW_LLM_MODEL: Model name (default gemini-1.5-flash-latest)
    FINDITNOW_MATCH_MAX_CANDIDATES: Candidates per prompt (default 50)
"""

import json
import math
import os
import re
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional, Protocol

import google.generativeai as genai

from ..observability import get_logger, get_metrics
from ..schemas import Item
from .catalog import ItemCatalog


logger = get_logger("finditnow.matching")

_PLACEHOLDER_KEYS = ("", "your_api_key_here")

_WORD = re.compile(r"[a-z0-9]+")
_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)

_STOPWORDS = frozenset({
    "the", "and", "with", "for", "from", "near", "this", "that", "was", "has",
    "have", "had", "its", "are", "but", "not", "you", "your", "our", "one",
    "some", "very", "found", "lost", "item", "into", "onto", "there", "which",
})


@dataclass
class MatchingConfig:
    api_key: str = ""
    model: str = "gemini-1.5-flash-latest"
    temperature: float = 0.2
    max_candidates: int = 50

    @classmethod
    def from_env(cls) -> "MatchingConfig":
        return cls(
            api_key=os.getenv("GEMINI_API_KEY", ""),
            model=os.getenv("FINDITNOW_LLM_MODEL", "gemini-1.5-flash-latest"),
            max_candidates=int(os.getenv("FINDITNOW_MATCH_MAX_CANDIDATES", "50")),
        )

    @property
    def has_api_key(self) -> bool:
        return self.api_key not in _PLACEHOLDER_KEYS


class LlmClient(Protocol):
    def generate(self, prompt: str, temperature: float) -> str:
        ...


class GeminiClient:
    """LlmClient backed by google-generativeai."""

    def __init__(self, api_key: str, model: str):
        genai.configure(api_key=api_key)
        self._model = genai.GenerativeModel(model)

    def generate(self, prompt: str, temperature: float) -> str:
        response = self._model.generate_content(
            prompt,
            generation_config={"temperature": temperature},
        )
        return response.text


# ============================================================
# LOCAL SCORING
# ============================================================

def _tokens(*texts: Optional[str]) -> set[str]:
    words = set()
    for text in texts:
        if text:
            words.update(
                w for w in _WORD.findall(text.lower())
                if len(w) > 2 and w not in _STOPWORDS
            )
    return words


def _overlap(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def _date_proximity(lost_on: date, found_on: date, horizon_days: int = 30) -> float:
    gap = abs((found_on - lost_on).days)
    return max(0.0, 1.0 - gap / horizon_days)


def similarity_score(lost: Item, found: Item) -> float:
    """
    Deterministic match score in [0, 1].

    Weights: category 0.3, keywords (name, description, marks) 0.35,
    location tokens 0.2, date proximity 0.15.
    """
    category = 1.0 if lost.category == found.category else 0.0
    keywords = _overlap(
        _tokens(lost.name, lost.description, lost.distinguishing_marks),
        _tokens(found.name, found.description, found.distinguishing_marks),
    )
    location = 1.0 if lost.location.strip().lower() == found.location.strip().lower() else _overlap(
        _tokens(lost.location), _tokens(found.location)
    )
    when = _date_proximity(lost.date, found.date)

    score = 0.3 * category + 0.35 * keywords + 0.2 * location + 0.15 * when
    return round(min(1.0, max(0.0, score)), 4)


def query_score(description: str, location: str, found: Item) -> float:
    """Score for a free-text query, which has no category or date."""
    keywords = _overlap(
        _tokens(description),
        _tokens(found.name, found.description, found.distinguishing_marks, found.category),
    )
    place = _overlap(_tokens(location), _tokens(found.location))
    return round(0.7 * keywords + 0.3 * place, 4)


# ============================================================
# PROMPTS AND PARSING
# ============================================================

def _describe_candidate(item: Item) -> str:
    return (
        "---\n"
        f"ID: {item.id}\n"
        f"Name: {item.name}\n"
        f"Category: {item.category}\n"
        f"Description: {item.description}\n"
        f"Distinguishing Marks: {item.distinguishing_marks or 'None'}\n"
        f"Location Found: {item.location}\n"
        f"Date Found: {item.date.isoformat()}"
    )


def build_suggest_prompt(lost: Item, candidates: list[Item]) -> str:
    found_block = "\n".join(_describe_candidate(c) for c in candidates)
    return f"""You are a smart matching assistant for a lost and found application.
Compare a "lost item" report against a list of "found item" reports and identify the most likely matches.
Focus on category, color, brand and especially unique distinguishing marks. Location and date matter but can be somewhat flexible.

Lost Item:
- Name: {lost.name}
- Category: {lost.category}
- Description: {lost.description}
- Distinguishing Marks: {lost.distinguishing_marks or 'None'}
- Location Last Seen: {lost.location}
- Date Lost: {lost.date.isoformat()}

Found Items:
{found_block}

Return a JSON array containing only the string IDs of the found items that are probable matches.
Leave out poor matches. If nothing matches, return an empty array.
Respond with the JSON array only, no other text."""


def build_match_prompt(description: str, location: str, candidates: list[Item]) -> str:
    found_block = "\n".join(_describe_candidate(c) for c in candidates)
    return f"""You are an assistant helping to match lost items with found items.

Lost Item Description: {description}
Location Last Seen: {location}

Found Items:
{found_block}

Score each plausible match between 0 and 1, where 1 is a perfect match. Focus on distinguishing marks.
Respond with a JSON array of objects with the keys "itemId" and "matchScore" only, no other text.
Leave out items that do not match. If nothing matches, return an empty array."""


def _strip_fences(text: str) -> str:
    return _FENCE.sub("", text or "").strip()


def _load_json(text: str) -> Any:
    try:
        return json.loads(_strip_fences(text))
    except RecursionError:
        raise ValueError("response is nested too deeply") from None


def parse_id_list(text: str, allowed: set[str]) -> list[str]:
    """
    Parse a JSON array of ids. Keeps order, drops duplicates and unknown ids.

    Raises:
        ValueError: not a JSON array of strings
    """
    data = _load_json(text)
    if not isinstance(data, list) or not all(isinstance(x, str) for x in data):
        raise ValueError("expected a JSON array of strings")

    seen = []
    for item_id in data:
        if item_id in allowed and item_id not in seen:
            seen.append(item_id)
    return seen


def parse_scored_list(text: str, allowed: set[str]) -> dict[str, float]:
    """
    Parse [{"itemId": ..., "matchScore": ...}]. Scores are clamped to [0, 1];
    entries with a non-string id or a non-finite score are skipped.

    Raises:
        ValueError: not a JSON array of objects
    """
    data = _load_json(text)
    if not isinstance(data, list):
        raise ValueError("expected a JSON array")

    scores: dict[str, float] = {}
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError("expected objects in the array")
        item_id = entry.get("itemId")
        score = entry.get("matchScore")
        if not isinstance(item_id, str) or item_id not in allowed:
            continue
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            continue
        try:
            value = float(score)
        except OverflowError:
            continue
        if not math.isfinite(value):
            continue
        scores[item_id] = max(scores.get(item_id, 0.0), min(1.0, max(0.0, value)))
    return scores


# ============================================================
# SERVICE
# ============================================================

class MatchingService:

    def __init__(
        self,
        catalog: ItemCatalog,
        config: Optional[MatchingConfig] = None,
        client: Optional[LlmClient] = None,
    ):
        self._catalog = catalog
        self.config = config or MatchingConfig.from_env()
        if client is None and self.config.has_api_key:
            client = GeminiClient(self.config.api_key, self.config.model)
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _ask(self, prompt: str) -> Optional[str]:
        start = time.perf_counter()
        try:
            text = self._client.generate(prompt, self.config.temperature)
        except Exception as e:
            get_metrics().record_llm_call((time.perf_counter() - start) * 1000, success=False)
            logger.error("LLM call failed", error=str(e), model=self.config.model)
            return None
        get_metrics().record_llm_call((time.perf_counter() - start) * 1000, success=True)
        return text

    def rank_candidates(self, lost: Item, candidates: list[Item]) -> list[Item]:
        """Best first, ties broken by newest report, truncated to max_candidates."""
        ranked = sorted(
            candidates,
            key=lambda c: (similarity_score(lost, c), c.created_at),
            reverse=True,
        )
        return ranked[: self.config.max_candidates]

    def suggest_matches(self, lost: Item) -> list[str]:
        """
        Ids of open found items the model considers matches for lost.

        Never raises; returns [] when disabled, when there is nothing to
        compare against, or when the model misbehaves.
        """
        if not self.enabled:
            logger.warning("Smart matching skipped: GEMINI_API_KEY is not configured")
            return []

        candidates = [c for c in self._catalog.list_found_candidates() if c.owner_id != lost.owner_id]
        if not candidates:
            return []

        ranked = self.rank_candidates(lost, candidates)
        text = self._ask(build_suggest_prompt(lost, ranked))
        if text is None:
            return []

        try:
            ids = parse_id_list(text, {c.id for c in ranked})
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            get_metrics().incr("llm_failures")
            logger.error("Failed to parse LLM response for matches", error=str(e))
            return []

        logger.info(
            "Matches suggested",
            item_id=lost.id,
            candidates=len(ranked),
            matches=len(ids),
        )
        return ids

    def match_items(self, description: str, location: str) -> list[dict[str, Any]]:
        """
        Free-text matching against the real catalog.

        Returns [{item_id, found_item_description, location_found, match_score}]
        best first. Descriptions and locations come from the catalog, only
        the score comes from the model.
        """
        if not self.enabled:
            logger.warning("Smart matching skipped: GEMINI_API_KEY is not configured")
            return []

        candidates = self._catalog.list_found_candidates()
        if not candidates:
            return []

        ranked = sorted(
            candidates,
            key=lambda c: (query_score(description, location, c), c.created_at),
            reverse=True,
        )[: self.config.max_candidates]
        by_id = {c.id: c for c in ranked}

        text = self._ask(build_match_prompt(description, location, ranked))
        if text is None:
            return []

        try:
            scores = parse_scored_list(text, set(by_id))
        except ValueError as e:
            get_metrics().incr("llm_failures")
            logger.error("Failed to parse LLM response for item matching", error=str(e))
            return []

        results = [
            {
                "item_id": item_id,
                "found_item_description": by_id[item_id].description,
                "location_found": by_id[item_id].location,
                "match_score": score,
            }
            for item_id, score in scores.items()
        ]
        return sorted(results, key=lambda r: r["match_score"], reverse=True)
