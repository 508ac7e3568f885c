"""Name Normalization Utilities.

Names are compared after lower-casing and collapsing whitespace:

    "  ACME   Corp "  ->  "acme corp"

Token helpers additionally strip punctuation and drop noise words so the
token-similarity strategy can compare "Acme Corp., Inc." with "ACME CORP".
"""

import re
from typing import List, Optional


NOISE_WORDS = {
    "the", "and", "of", "for", "a", "an",
    "inc", "incorporated", "corp", "corporation", "co", "company",
    "llc", "ltd", "limited", "lp", "llp", "plc", "gmbh",
}


def normalize_name(name: Optional[str]) -> str:
    """Lower-case and collapse whitespace.

    Examples:
        >>> normalize_name("  ACME   Corp ")
        'acme corp'
    """
    if not name:
        return ""
    return re.sub(r"\s+", " ", name).strip().lower()


def normalize_sku(sku: Optional[str]) -> str:
    """SKUs compare case-insensitively with surrounding whitespace removed."""
    if not sku:
        return ""
    return sku.strip().upper()


def normalize_email(email: Optional[str]) -> str:
    if not email:
        return ""
    return email.strip().lower()


def tokenize_name(name: str) -> List[str]:
    """Tokenize a name into significant words for matching.

    Removes punctuation and noise words and returns unique tokens in order.

    Examples:
        >>> tokenize_name("Acme Corp., Inc. - West")
        ['acme', 'west']
    """
    if not name:
        return []

    text = re.sub(r"[.,;:!?()\"'\[\]{}&/\-]", " ", name.lower())
    significant = [t for t in text.split() if t not in NOISE_WORDS and len(t) > 1]

    seen = set()
    result = []
    for t in significant:
        if t not in seen:
            seen.add(t)
            result.append(t)
    return result


def calculate_token_similarity(tokens1: List[str], tokens2: List[str]) -> float:
    """Calculate similarity between two token lists using Jaccard + ordering.

    Combines:
    - Jaccard similarity (set overlap)
    - Order bonus (if first tokens match)
    - Substring matching (partial token matches)

    Returns:
        Similarity score from 0.0 to 1.0
    """
    if not tokens1 or not tokens2:
        return 0.0

    set1 = set(tokens1)
    set2 = set(tokens2)
    intersection = set1 & set2
    union = set1 | set2

    jaccard = len(intersection) / len(union)

    # Company names usually start with the key word
    first_match_bonus = 0.15 if tokens1[0] == tokens2[0] else 0.0

    # Partial token matching (abbreviations), min 3 chars
    partial_matches = 0.0
    for t1 in set1 - intersection:
        for t2 in set2 - intersection:
            if len(t1) >= 3 and len(t2) >= 3 and (t1 in t2 or t2 in t1):
                partial_matches += 0.5
                break

    partial_bonus = min(0.2, partial_matches * 0.1)

    return min(1.0, jaccard + first_match_bonus + partial_bonus)
