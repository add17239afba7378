"""Locate a business inside a ranked maps result list.

Strong identifiers are tried first because they are unambiguous; textual
matching on the listing title is the fallback, and the website domain is
the weakest signal. The first tier that succeeds wins, even if a later tier
would also match.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from . import config
from .maps_client import MapsItem
from .models import BusinessIdentity, Competitor, MatchTier

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class MatchResult:
    rank: Optional[int] = None
    url: Optional[str] = None
    tier: Optional[MatchTier] = None

    @property
    def matched(self) -> bool:
        return self.rank is not None


NO_MATCH = MatchResult()


def normalize_name(name: str) -> str:
    lowered = (name or "").lower()
    return _WS_RE.sub(" ", _NON_ALNUM_RE.sub(" ", lowered)).strip()


def significant_words(name: str, stopwords: Iterable[str] = config.STOPWORDS) -> List[str]:
    # Punctuation is dropped, not spaced out as in normalize_name: "Joe's" gives
    # "joes", which is not found in the normalized title "joe s ...".
    stop = set(stopwords)
    cleaned = _NON_ALNUM_RE.sub("", (name or "").lower())
    return [w for w in cleaned.split() if len(w) > 1 and w not in stop]


def normalize_domain(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    value = url.strip().lower()
    value = re.sub(r"^[a-z][a-z0-9+.-]*://", "", value)
    if value.startswith("www."):
        value = value[4:]
    value = value.split("/")[0].split("?")[0].split("#")[0]
    return value or None


def organic_order(items: Sequence[MapsItem]) -> List[MapsItem]:
    # Stable sort: ties keep provider order.
    return sorted(items, key=lambda item: item.rank_group)


def top_competitors(items: Sequence[MapsItem], n: int = config.TOP_COMPETITORS) -> List[Competitor]:
    ordered = organic_order(items)
    return [
        Competitor(name=item.title, rank=idx, domain=item.domain, url=item.url)
        for idx, item in enumerate(ordered[:n], start=1)
    ]


class EntityMatcher:
    def __init__(
        self,
        overlap_threshold: Optional[float] = None,
        min_significant_words: int = config.MATCH_MIN_SIGNIFICANT_WORDS,
        stopwords: Iterable[str] = config.STOPWORDS,
    ) -> None:
        threshold = config.MATCH_OVERLAP_THRESHOLD if overlap_threshold is None else overlap_threshold
        if not 0.0 < threshold <= 1.0:
            raise ValueError("overlap_threshold must be in (0, 1]")
        self.overlap_threshold = float(threshold)
        self.min_significant_words = max(1, int(min_significant_words))
        self.stopwords = frozenset(stopwords)

    def match(self, items: Sequence[MapsItem], business: BusinessIdentity) -> MatchResult:
        if not items:
            return NO_MATCH

        # Organic rank is the position after paid entries were dropped, not
        # the provider's rank_group.
        ordered = organic_order(items)
        ranked = list(enumerate(ordered, start=1))

        for tier_check in (self._by_identifier, self._by_exact_name, self._by_words, self._by_domain):
            result = tier_check(ranked, business)
            if result is not None:
                return result
        return NO_MATCH

    def _by_identifier(self, ranked, business: BusinessIdentity) -> Optional[MatchResult]:
        if business.cid:
            for rank, item in ranked:
                if item.cid and item.cid == business.cid:
                    return MatchResult(rank, item.url, MatchTier.CID)
        if business.place_id or business.feature_id:
            for rank, item in ranked:
                if business.place_id and item.place_id == business.place_id:
                    return MatchResult(rank, item.url, MatchTier.PLACE_ID)
                if business.feature_id and item.feature_id == business.feature_id:
                    return MatchResult(rank, item.url, MatchTier.PLACE_ID)
        return None

    def _by_exact_name(self, ranked, business: BusinessIdentity) -> Optional[MatchResult]:
        target = normalize_name(business.name)
        if not target:
            return None
        for rank, item in ranked:
            if normalize_name(item.title) == target:
                return MatchResult(rank, item.url, MatchTier.EXACT_NAME)
        return None

    def _by_words(self, ranked, business: BusinessIdentity) -> Optional[MatchResult]:
        words = significant_words(business.name, self.stopwords)
        if len(words) < self.min_significant_words:
            return None

        titles = [(rank, item, normalize_name(item.title)) for rank, item in ranked]
        # Substring containment, not whole words: "art" is found in "smart".
        for rank, item, title in titles:
            if all(word in title for word in words):
                return MatchResult(rank, item.url, MatchTier.SIGNIFICANT_WORDS)

        needed = math.ceil(len(words) * self.overlap_threshold)
        best: Optional[MatchResult] = None
        best_count = 0
        for rank, item, title in titles:
            count = sum(1 for word in words if word in title)
            if count >= needed and count > best_count:
                best_count = count
                best = MatchResult(rank, item.url, MatchTier.SIGNIFICANT_WORDS)
        return best

    def _by_domain(self, ranked, business: BusinessIdentity) -> Optional[MatchResult]:
        target = normalize_domain(business.domain) or normalize_domain(business.website)
        if not target:
            return None
        for rank, item in ranked:
            if normalize_domain(item.domain) == target:
                return MatchResult(rank, item.url, MatchTier.DOMAIN)
        return None
