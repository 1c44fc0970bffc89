from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from threatboard.matcher import ThreatMatcher, normalize_title
from threatboard.models import (
    Detection,
    DetectionType,
    IngestionBatch,
    IngestStats,
    LogKind,
    LogTable,
    MatchStrategy,
    Threat,
)
from threatboard.sheet_parser import WorkbookSource, parse_workbook

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# CONSTANTS & MAPPINGS
# -------------------------------------------------------------------

# Fixed processing order; WAF folds into NDR, never the reverse
KIND_ORDER = (LogKind.MAIL, LogKind.NDR, LogKind.WAF)

KIND_TYPE = {
    LogKind.MAIL: DetectionType.MAIL,
    LogKind.NDR: DetectionType.NDR,
    LogKind.WAF: DetectionType.WAF,
}

KIND_SOURCE = {
    LogKind.MAIL: "스팸스나이퍼",
    LogKind.NDR: "NDR",
    LogKind.WAF: "웹방화벽",
}

DEFAULT_ACTION = {
    LogKind.MAIL: "유입",
    LogKind.NDR: "탐지",
    LogKind.WAF: "차단",
}

MERGED_ACTION = "탐지/차단"
MAIL_DEFAULT_MEASURE = "스팸 격리"

# Per-row count when the cell is missing or not a number
ROW_COUNT_DEFAULT = {
    LogKind.MAIL: 0,
    LogKind.NDR: 0,
    LogKind.WAF: 1,
}

# (detail key, row attribute) in display order
DETAIL_FIELDS: Dict[LogKind, Tuple[Tuple[str, str], ...]] = {
    LogKind.MAIL: (
        ("시간", "date"),
        ("발신자", "sender"),
        ("제목", "subject"),
        ("수신자", "recipient"),
        ("필터정보", "filter_info"),
    ),
    LogKind.NDR: (
        ("NDR_RuleName", "rule_name"),
        ("로그소스", "log_source"),
        ("소스 IP", "src_ip"),
        ("대상 IP", "dst_ip"),
        ("탐지유형", "det_type"),
        ("클라이언트 IP", "client_ip"),
        ("서버 IP", "server_ip"),
        ("탐지근거", "basis"),
    ),
    LogKind.WAF: (
        ("URL/도메인", "url_domain"),
        ("RuleName", "rule_name"),
        ("패턴명", "pattern_name"),
        ("클라이언트 IP", "client_ip"),
        ("서버 IP", "server_ip"),
        ("탐지근거", "basis"),
    ),
}

# Keys appended to an NDR detection when a WAF detection folds into it
MERGED_WAF_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("웹방화벽_클라이언트IP", "client_ip"),
    ("웹방화벽_서버IP", "server_ip"),
    ("웹방화벽_URL/도메인", "url_domain"),
    ("웹방화벽_RuleName", "rule_name"),
    ("웹방화벽_탐지근거", "basis"),
)


# -------------------------------------------------------------------
# Counting & detail helpers
# -------------------------------------------------------------------

def parse_count(value: Any) -> Optional[int]:
    """Non-negative integer from a count cell, or None if it is not one."""
    if value is None:
        return None
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if number != number or number < 0:  # NaN or negative
        return None
    return int(number)


def aggregate_count(rows: Sequence[Any], kind: LogKind, has_count_column: bool = True) -> int:
    """
    Sum of row counts with per-kind defaults.

    Mail sheets without a count column count one per row; an NDR group whose
    counts are all empty falls back to the number of rows.
    """
    if kind is LogKind.MAIL and not has_count_column:
        return len(rows)

    default = ROW_COUNT_DEFAULT[kind]
    total = 0
    for row in rows:
        n = parse_count(getattr(row, "count", None))
        total += default if n is None else n

    if kind is LogKind.NDR and total == 0:
        return len(rows)
    return total


def distinct_join(values: Iterable[Optional[str]], sep: str = ", ") -> str:
    """Join distinct non-empty values in first-seen order."""
    seen: List[str] = []
    for v in values:
        if v and v not in seen:
            seen.append(v)
    return sep.join(seen)


def _field_values(rows: Sequence[Any], attr: str) -> str:
    return distinct_join(getattr(r, attr, "") for r in rows)


def _first_action(rows: Sequence[Any]) -> str:
    return (getattr(rows[0], "action", "") or "") if rows else ""


def make_label(kind_tag: str, title: str, count: int, verb: str, noun: str = "이벤트") -> str:
    return f"[{kind_tag}] {title} 관련 {noun} {count}건 {verb}"


# -------------------------------------------------------------------
# Candidates (phase 1)
# -------------------------------------------------------------------

@dataclass
class DetectionCandidate:
    """Aggregated rows for one (article, log kind) before ids are assigned."""
    kind: LogKind
    threat_id: Optional[int]
    title: str
    rows: List[Any] = field(default_factory=list)
    has_count_column: bool = True

    @property
    def group_key(self) -> Tuple[str, Any]:
        # title groups fold per article; unresolved titles stay apart
        if self.threat_id is not None:
            return ("threat", self.threat_id)
        return ("title", normalize_title(self.title))

    @property
    def count(self) -> int:
        return aggregate_count(self.rows, self.kind, self.has_count_column)

    @property
    def action(self) -> str:
        return _first_action(self.rows) or DEFAULT_ACTION[self.kind]

    def label(self) -> str:
        count = self.count
        if self.kind is LogKind.MAIL:
            return make_label("메일", self.title, count, "유입", noun="메일")
        if self.kind is LogKind.NDR:
            return make_label("NDR", self.title, count, "탐지")
        return make_label("웹방화벽", self.title, count, "차단")

    def detail(self) -> Dict[str, str]:
        count = self.count
        detail: Dict[str, str] = {}
        detail["로그출처"] = KIND_SOURCE[self.kind]
        detail["기사명"] = self.title

        for key, attr in DETAIL_FIELDS[self.kind]:
            value = _field_values(self.rows, attr)
            if value:
                detail[key] = value

        if self.kind is LogKind.MAIL:
            detail["수신건수"] = f"{count}건"
            detail["조치"] = _first_action(self.rows) or MAIL_DEFAULT_MEASURE
        elif self.kind is LogKind.NDR:
            detail["매칭이벤트건수"] = f"{count}건"
            detail["조치량"] = f"{count}건 탐지"
        else:
            detail["매칭이벤트건수"] = f"{count}건"
            detail["조치량"] = f"{count}건 차단"
        return detail

    def to_detection(self, detection_id: int) -> Detection:
        return Detection(
            id=detection_id,
            threat_id=self.threat_id,
            type=KIND_TYPE[self.kind],
            label=self.label(),
            count=self.count,
            action=self.action,
            source=KIND_SOURCE[self.kind],
            detail=self.detail(),
        )


def _keyword_candidates(
    table: LogTable, matcher: ThreatMatcher
) -> Tuple[List[DetectionCandidate], int]:
    candidates = []
    matched_rows = set()
    for threat in matcher.threats:
        rows = matcher.rows_for_threat(table.rows, table.kind, threat)
        if not rows:
            continue
        matched_rows.update(id(r) for r in rows)
        candidates.append(DetectionCandidate(
            kind=table.kind,
            threat_id=threat.id,
            title=threat.title,
            rows=rows,
            has_count_column=table.has_count_column,
        ))
    return candidates, len(table.rows) - len(matched_rows)


def _title_candidates(
    table: LogTable, matcher: ThreatMatcher
) -> Tuple[List[DetectionCandidate], int]:
    groups: "OrderedDict[str, List[Any]]" = OrderedDict()
    unmatched = 0
    for row in table.rows:
        if not row.article_title:
            unmatched += 1
            continue
        groups.setdefault(row.article_title, []).append(row)

    # groups that resolve to the same article fold into one candidate
    merged: "OrderedDict[Tuple[str, Any], DetectionCandidate]" = OrderedDict()
    for article_title, rows in groups.items():
        threat = matcher.resolve_title(article_title)
        if threat is None:
            unmatched += len(rows)
        cand = DetectionCandidate(
            kind=table.kind,
            threat_id=threat.id if threat else None,
            title=article_title,
            rows=list(rows),
            has_count_column=table.has_count_column,
        )
        existing = merged.get(cand.group_key)
        if existing is None:
            merged[cand.group_key] = cand
        else:
            existing.rows.extend(rows)
    return list(merged.values()), unmatched


def build_candidates(
    table: LogTable, matcher: ThreatMatcher
) -> Tuple[List[DetectionCandidate], int]:
    """Candidates for one log table plus the number of rows left unmatched."""
    if table.strategy is MatchStrategy.TITLE:
        return _title_candidates(table, matcher)
    return _keyword_candidates(table, matcher)


# -------------------------------------------------------------------
# Merge (phase 2)
# -------------------------------------------------------------------

def combine_ndr_waf(ndr: Detection, waf: DetectionCandidate) -> Detection:
    """Fold a WAF candidate into an NDR detection, keeping its id."""
    waf_count = waf.count
    total = ndr.count + waf_count

    detail = dict(ndr.detail)
    for key, attr in MERGED_WAF_FIELDS:
        value = _field_values(waf.rows, attr)
        if value:
            detail[key] = value
    detail["조치량"] = f"NDR 탐지 {ndr.count}건 / 웹방화벽 차단 {waf_count}건"

    return replace(
        ndr,
        type=DetectionType.NDR_WAF,
        label=make_label("NDR, 웹방화벽", waf.title, total, MERGED_ACTION),
        count=total,
        action=MERGED_ACTION,
        detail=detail,
    )


def merge_detections(
    candidates: Dict[LogKind, Sequence[DetectionCandidate]]
) -> List[Detection]:
    """
    Reduce per-kind candidates into the final ordered detection list.

    Kinds are processed Mail, NDR, WAF. A WAF candidate replaces the first
    still-unmerged NDR detection with the same threat id (None included) by
    the combined record; mail detections never merge.
    """
    detections: List[Detection] = []
    ndr_positions: Dict[Optional[int], List[int]] = {}

    for kind in KIND_ORDER:
        for cand in candidates.get(kind, ()):
            open_ndr = ndr_positions.get(cand.threat_id)
            if kind is LogKind.WAF and open_ndr:
                pos = open_ndr.pop(0)
                detections[pos] = combine_ndr_waf(detections[pos], cand)
                continue

            detections.append(cand.to_detection(len(detections) + 1))
            if kind is LogKind.NDR:
                ndr_positions.setdefault(cand.threat_id, []).append(len(detections) - 1)

    return detections


# -------------------------------------------------------------------
# Pipeline
# -------------------------------------------------------------------

def correlate(
    threats: Sequence[Threat], tables: Dict[LogKind, LogTable]
) -> Tuple[List[Detection], IngestStats]:
    matcher = ThreatMatcher(threats)
    stats = IngestStats()
    candidates: Dict[LogKind, List[DetectionCandidate]] = {}

    for kind in KIND_ORDER:
        table = tables.get(kind)
        if table is None:
            continue
        cands, unmatched = build_candidates(table, matcher)
        candidates[kind] = cands
        stats.strategies[kind.value] = table.strategy.value
        stats.matched[kind.value] = len(table.rows) - unmatched
        stats.unmatched[kind.value] = unmatched
        if unmatched:
            logger.info(
                "%s: %d of %d rows matched no article",
                table.sheet_name or kind.value, unmatched, len(table.rows),
            )

    detections = merge_detections(candidates)
    return detections, stats


def build_batch(
    threats: Sequence[Threat],
    tables: Dict[LogKind, LogTable],
    source_name: str = "",
) -> IngestionBatch:
    detections, stats = correlate(threats, tables)
    return IngestionBatch(
        threats=tuple(threats),
        detections=tuple(detections),
        stats=stats,
        source_name=source_name,
    )


def ingest_workbook(source: WorkbookSource, source_name: Optional[str] = None) -> IngestionBatch:
    """
    Parse a workbook and correlate its logs with its articles.

    Raises WorkbookReadError / WorkbookFormatError; a workbook with no
    recognized sheets gives an empty batch.
    """
    threats, tables, name = parse_workbook(source)
    batch = build_batch(threats, tables, source_name or name)
    logger.info(
        "%s: %d articles, %d detections", batch.source_name,
        len(batch.threats), len(batch.detections),
    )
    return batch
