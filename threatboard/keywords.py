from __future__ import annotations

import re
from typing import Set

# Whitespace plus the punctuation article titles use as separators
_SPLIT_RE = re.compile(r"[\s·\-/\[\]\(\)\{\}<>,]+")

MIN_KEYWORD_LENGTH = 2

STOPWORDS = frozenset({
    "및", "의", "을", "를", "이", "가", "은", "는", "에", "와", "과", "도", "로",
    "관련", "대한", "대해", "통한", "통해", "위한", "위해", "등", "에서", "으로",
    "에게", "부터", "까지", "하는", "되는", "있는", "최근", "또는", "그리고",
})


def extract_keywords(title: str) -> Set[str]:
    """
    Significant tokens of an article title.

    Tokens shorter than two characters and stopwords are dropped. An empty
    result means the article can never be matched by keyword.
    """
    if not title:
        return set()
    return {
        tok
        for tok in _SPLIT_RE.split(str(title))
        if len(tok) >= MIN_KEYWORD_LENGTH and tok not in STOPWORDS
    }
