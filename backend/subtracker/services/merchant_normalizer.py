"""
Merchant label normalization.

The same normalized form is used to group transactions and to match them
against catalog patterns, so both sides must go through normalize_merchant_name.
"""
import re
from typing import Optional

CORPORATE_SUFFIX_PATTERN = re.compile(r"\b(inc|llc|ltd|corp|corporation|company)\b")
NON_ALPHANUMERIC_PATTERN = re.compile(r"[^a-z0-9\s]")
WHITESPACE_PATTERN = re.compile(r"\s+")


def normalize_merchant_name(name: Optional[str]) -> str:
    """
    Canonicalize a raw merchant label.

    >>> normalize_merchant_name("Netflix, Inc.")
    'netflix'
    >>> normalize_merchant_name("NETFLIX INC.")
    'netflix'
    """
    if not name:
        return ""

    normalized = name.lower()
    normalized = CORPORATE_SUFFIX_PATTERN.sub("", normalized)
    normalized = NON_ALPHANUMERIC_PATTERN.sub("", normalized)
    normalized = WHITESPACE_PATTERN.sub(" ", normalized)
    return normalized.strip()
