from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence, Set

from threatboard.keywords import extract_keywords
from threatboard.models import LogKind, Threat

# Row fields searched for article keywords, per log kind
MATCH_FIELDS: Dict[LogKind, tuple] = {
    LogKind.MAIL: ("subject", "sender"),
    LogKind.NDR: ("rule_name", "log_source"),
    LogKind.WAF: ("url_domain", "rule_name", "pattern_name", "basis"),
}

# Truncated article titles still match on this many leading characters
TITLE_PREFIX_LENGTH = 8

_WS_RE = re.compile(r"\s+")


def normalize_title(text: Optional[str]) -> str:
    return _WS_RE.sub("", str(text or "")).lower()


def row_matches_keywords(row: object, kind: LogKind, keywords: Iterable[str]) -> bool:
    """True if any keyword occurs (case-sensitive) in any match field of the row."""
    values = [getattr(row, f, "") or "" for f in MATCH_FIELDS[kind]]
    return any(kw in v for kw in keywords for v in values if v)


class ThreatMatcher:
    """
    Pairs log rows with the articles of one ingestion batch.

    Articles whose title yields no keywords are never matched, under either
    strategy.
    """

    def __init__(self, threats: Sequence[Threat]):
        self.threats: List[Threat] = list(threats)
        self.keywords: Dict[int, Set[str]] = {
            t.id: extract_keywords(t.title) for t in self.threats
        }
        self._candidates = [t for t in self.threats if self.keywords[t.id]]
        self._normalized = {t.id: normalize_title(t.title) for t in self._candidates}

    # --- keyword strategy -------------------------------------------

    def matches(self, row: object, kind: LogKind, threat: Threat) -> bool:
        keywords = self.keywords.get(threat.id)
        if not keywords:
            return False
        return row_matches_keywords(row, kind, keywords)

    def rows_for_threat(self, rows: Iterable[object], kind: LogKind, threat: Threat) -> List[object]:
        return [r for r in rows if self.matches(r, kind, threat)]

    # --- title strategy ---------------------------------------------

    def resolve_title(self, article_title: Optional[str]) -> Optional[Threat]:
        """
        First article whose normalized title contains the query, else the
        first whose leading characters appear in the query.
        """
        query = normalize_title(article_title)
        if not query:
            return None

        for t in self._candidates:
            if query in self._normalized[t.id]:
                return t
        for t in self._candidates:
            if self._normalized[t.id][:TITLE_PREFIX_LENGTH] in query:
                return t
        return None
