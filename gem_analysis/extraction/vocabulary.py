"""
Ordered term lists for free-text fallback extraction.

Order matters: the first term that matches wins, so multiword and more
specific terms come before the words they contain.
"""

import re
from typing import Dict, List, Optional, Pattern, Tuple

Vocabulary = List[Tuple[str, Pattern]]


def _terms(*terms: str, case_sensitive: bool = False) -> Vocabulary:
    flags = 0 if case_sensitive else re.IGNORECASE
    compiled = []
    for term in terms:
        # "fancy yellow" also matches "fancy-yellow"
        body = r"[\s\-]+".join(re.escape(word) for word in term.split())
        compiled.append((term, re.compile(rf"\b{body}\b", flags)))
    return compiled


COLOR_TERMS = _terms(
    "fancy yellow",
    "fancy blue",
    "fancy pink",
    "fancy green",
    "colorless",
    "colourless",
    "red",
    "blue",
    "green",
    "yellow",
    "pink",
    "purple",
    "violet",
    "orange",
    "brown",
    "white",
    "black",
)

CUT_TERMS = _terms(
    "round brilliant",
    "emerald cut",
    "princess",
    "cushion",
    "radiant",
    "asscher",
    "marquise",
    "pear",
    "oval",
    "baguette",
    "heart",
    "cabochon",
    "trillion",
    "triangle",
    "trapezoid",
    "rhombus",
    "pentagon",
    "hexagon",
    "round",
)

# Grade codes are matched case-sensitively ("IF" vs the word "if")
CLARITY_TERMS = _terms(
    "VVS1", "VVS2", "VS1", "VS2", "SI1", "SI2", "I1", "IF", "FL",
    case_sensitive=True,
) + _terms(
    "loupe clean",
    "eye clean",
    "heavily included",
    "slightly included",
    "included",
)

VOCABULARIES: Dict[str, Vocabulary] = {
    "color": COLOR_TERMS,
    "cut": CUT_TERMS,
    "clarity": CLARITY_TERMS,
}

_CANONICAL = {"colourless": "colorless"}


def match_term(attribute: str, text: str) -> Optional[str]:
    """First vocabulary term for ``attribute`` found in ``text``, or None."""
    for term, pattern in VOCABULARIES.get(attribute, []):
        if pattern.search(text):
            return _CANONICAL.get(term, term)
    return None
