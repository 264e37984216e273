from __future__ import annotations
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import json
import logging
import re

from pydantic import BaseModel, Field, ValidationError

from cartsync.domain.models.rewards import RewardKind, RewardThreshold
from cartsync.domain.services.constants import (
    COMPLEMENT_AUTOMATIC,
    COMPLEMENT_MANUAL,
    DEFAULT_COMPLEMENT_RULES,
    MIN_MASTER_SIZE,
    SCORE_COMPLEMENT_AUTO,
    SCORE_MANUAL,
    SUGGEST_PRICE,
    SUGGEST_SMART,
)
from cartsync.domain.services.money import major_to_cents

logger = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        # merchant typed something that is not a regex: match it literally
        return re.compile(re.escape(pattern), re.IGNORECASE)


class ComplementRule(BaseModel):
    pattern: str
    keywords: Tuple[str, ...]
    confidence: float = SCORE_COMPLEMENT_AUTO

    model_config = {"frozen": True}

    @property
    def regex(self) -> re.Pattern:
        return _compile(self.pattern)

    def matches(self, text: str) -> bool:
        return bool(self.regex.search(text))


class RecommendationRuleSet(BaseModel):
    manual_product_ids: Tuple[str, ...] = ()
    patterns: Tuple[ComplementRule, ...] = ()
    overrides: Tuple[ComplementRule, ...] = ()
    complement_mode: str = COMPLEMENT_AUTOMATIC

    model_config = {"frozen": True}

    def active_rules(self) -> List[ComplementRule]:
        """Overrides first; they outrank the automatic table."""
        if self.complement_mode == COMPLEMENT_MANUAL:
            return list(self.overrides)
        return list(self.overrides) + list(self.patterns)


class EngineConfig(BaseModel):
    """Typed merchant settings snapshot; build it with config_from_raw()."""
    enable_recommendations: bool = True
    max_recommendations: int = Field(default=4, ge=1, le=24)
    min_master_size: int = Field(default=MIN_MASTER_SIZE, ge=1)
    rule_set: RecommendationRuleSet = RecommendationRuleSet()
    thresholds: Tuple[RewardThreshold, ...] = ()
    enable_threshold_based_suggestions: bool = False
    threshold_suggestion_mode: str = SUGGEST_SMART
    hide_recommendations_after_threshold: bool = False
    currency_decimals: int = Field(default=2, ge=0, le=4)

    model_config = {"frozen": True}

    @property
    def gift_thresholds(self) -> List[RewardThreshold]:
        return [t for t in self.thresholds if t.is_gift]

    def threshold_by_id(self, threshold_id: str) -> Optional[RewardThreshold]:
        return next((t for t in self.thresholds if t.id == threshold_id), None)

    @property
    def gap_reranking(self) -> bool:
        return self.enable_threshold_based_suggestions and self.threshold_suggestion_mode in (SUGGEST_SMART, SUGGEST_PRICE)


# ---- defaulting ----------------------------------------------------------

def _bool(raw: Mapping[str, Any], key: str, default: bool) -> bool:
    val = raw.get(key)
    if val is None:
        return default
    if isinstance(val, str):
        return val.strip().lower() in {"1", "true", "yes", "on"}
    return bool(val)


def _int(raw: Mapping[str, Any], key: str, default: int, lo: int, hi: int) -> int:
    try:
        return min(hi, max(lo, int(raw.get(key, default))))
    except (TypeError, ValueError):
        return default


def _csv_ids(val: Any) -> Tuple[str, ...]:
    if isinstance(val, str):
        parts: Iterable[Any] = val.split(",")
    elif isinstance(val, (list, tuple)):
        parts = val
    else:
        return ()
    seen: Dict[str, None] = {}
    for p in parts:
        s = str(p).strip()
        # storefront ids may arrive as gid://shopify/Product/123
        s = s.rsplit("/", 1)[-1]
        if s:
            seen.setdefault(s, None)
    return tuple(seen)


def _json_list(val: Any) -> List[Any]:
    if isinstance(val, list):
        return val
    if isinstance(val, str) and val.strip():
        try:
            parsed = json.loads(val)
        except json.JSONDecodeError:
            logger.warning("settings JSON field unreadable, ignored value=%.80s", val)
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _rules(table: Any, confidence: float) -> Tuple[ComplementRule, ...]:
    """Accepts {pattern: [keywords]} or [{pattern, keywords}] shapes."""
    if isinstance(table, str):
        try:
            table = json.loads(table) if table.strip() else {}
        except json.JSONDecodeError:
            logger.warning("complement overrides unreadable, ignored")
            return ()
    items: List[Tuple[Any, Any]] = []
    if isinstance(table, Mapping):
        items = list(table.items())
    elif isinstance(table, list):
        items = [(e.get("pattern"), e.get("keywords") or e.get("complements")) for e in table if isinstance(e, Mapping)]
    rules = []
    for pattern, keywords in items:
        if not pattern:
            continue
        if isinstance(keywords, str):
            keywords = keywords.split(",")
        kws = tuple(str(k).strip().lower() for k in keywords or [] if str(k).strip())
        if kws:
            rules.append(ComplementRule(pattern=str(pattern), keywords=kws, confidence=confidence))
    return tuple(rules)


def _thresholds(raw: Mapping[str, Any], decimals: int) -> Tuple[RewardThreshold, ...]:
    out: List[RewardThreshold] = []
    if _bool(raw, "enableFreeShipping", False):
        amount = major_to_cents(raw.get("freeShippingThreshold"), decimals)
        if amount > 0:
            out.append(RewardThreshold(amount_cents=amount, kind=RewardKind.FREE_SHIPPING, title="Free shipping"))
    if _bool(raw, "enableGiftGating", False):
        for entry in _json_list(raw.get("giftThresholds")):
            if not isinstance(entry, Mapping):
                continue
            ids = _csv_ids(str(entry.get("productId") or ""))
            try:
                out.append(RewardThreshold(
                    amount_cents=major_to_cents(entry.get("threshold", entry.get("amount")), decimals),
                    kind=RewardKind.GIFT,
                    product_id=ids[0] if ids else None,
                    product_handle=entry.get("productHandle"),
                    variant_id=str(entry["variantId"]) if entry.get("variantId") else None,
                    title=str(entry.get("productTitle") or entry.get("title") or ""),
                ))
            except ValidationError as e:
                logger.warning("gift threshold skipped entry=%s err=%s", entry, e.errors()[0].get("msg"))
    # ascending by amount, established once here
    return tuple(sorted(out, key=lambda t: t.amount_cents))


def config_from_raw(raw: Optional[Mapping[str, Any]]) -> EngineConfig:
    """
    The one place defaults are applied to a stored settings document.
    Unknown or malformed fields fall back to defaults instead of failing the load.
    """
    raw = raw or {}
    decimals = _int(raw, "currencyDecimals", 2, 0, 4)

    mode = str(raw.get("complementDetectionMode") or COMPLEMENT_AUTOMATIC).lower()
    if mode not in (COMPLEMENT_AUTOMATIC, COMPLEMENT_MANUAL):
        mode = COMPLEMENT_AUTOMATIC

    manual_ids: Tuple[str, ...] = ()
    if _bool(raw, "enableManualRecommendations", True):
        manual_ids = _csv_ids(raw.get("manualRecommendationProducts"))

    suggestion_mode = str(raw.get("thresholdSuggestionMode") or SUGGEST_SMART).lower()
    if suggestion_mode not in (SUGGEST_SMART, SUGGEST_PRICE):
        suggestion_mode = SUGGEST_SMART

    return EngineConfig(
        enable_recommendations=_bool(raw, "enableRecommendations", True),
        max_recommendations=_int(raw, "maxRecommendations", 4, 1, 24),
        min_master_size=_int(raw, "minMasterSize", MIN_MASTER_SIZE, 1, 100),
        rule_set=RecommendationRuleSet(
            manual_product_ids=manual_ids,
            patterns=_rules(DEFAULT_COMPLEMENT_RULES, SCORE_COMPLEMENT_AUTO),
            overrides=_rules(raw.get("complementOverrides"), SCORE_MANUAL),
            complement_mode=mode,
        ),
        thresholds=_thresholds(raw, decimals),
        enable_threshold_based_suggestions=_bool(raw, "enableThresholdBasedSuggestions", False),
        threshold_suggestion_mode=suggestion_mode,
        hide_recommendations_after_threshold=_bool(raw, "hideRecommendationsAfterThreshold", False),
        currency_decimals=decimals,
    )
