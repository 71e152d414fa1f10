"""
Match normalized merchant names against the service catalog.

Scoring is a fixed, auditable policy:
    - 100 if any normalized catalog pattern is a substring of the merchant
    - otherwise the best edit-distance similarity to any pattern or display name
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from subtracker.services.merchant_normalizer import normalize_merchant_name
from subtracker.services.text_similarity import string_similarity


@dataclass(frozen=True)
class CatalogEntry:
    """Read-only view of a catalog row, safe to share across sessions."""
    id: UUID
    name: str
    merchant_patterns: Tuple[str, ...] = ()
    base_price: Optional[Decimal] = None
    normalized_patterns: Tuple[str, ...] = field(default=(), compare=False)

    @classmethod
    def build(
        cls,
        id: UUID,
        name: str,
        merchant_patterns: Sequence[str] = (),
        base_price: Optional[Decimal] = None,
    ) -> "CatalogEntry":
        normalized = tuple(
            p for p in (normalize_merchant_name(pattern) for pattern in merchant_patterns) if p
        )
        return cls(
            id=id,
            name=name,
            merchant_patterns=tuple(merchant_patterns),
            base_price=base_price,
            normalized_patterns=normalized,
        )


@dataclass
class MerchantMatch:
    service: Optional[CatalogEntry]
    score: float


class CatalogMatcher:
    """Finds the catalog entry that best explains a merchant name."""

    def __init__(self, entries: List[CatalogEntry]):
        self.entries = entries

    def match(self, merchant_name: str) -> MerchantMatch:
        normalized_merchant = normalize_merchant_name(merchant_name)
        best_match: Optional[CatalogEntry] = None
        best_score = 0.0

        if not normalized_merchant:
            return MerchantMatch(service=None, score=0.0)

        for entry in self.entries:
            for pattern in entry.normalized_patterns:
                if pattern in normalized_merchant:
                    return MerchantMatch(service=entry, score=100.0)

                similarity = string_similarity(normalized_merchant, pattern)
                if similarity > best_score:
                    best_score = similarity
                    best_match = entry

            # Display names are only lowercased and trimmed, punctuation included
            name_score = string_similarity(normalized_merchant, entry.name)
            if name_score > best_score:
                best_score = name_score
                best_match = entry

        return MerchantMatch(service=best_match, score=best_score)
