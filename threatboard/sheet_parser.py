from __future__ import annotations

import datetime
import io
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd
import requests

from threatboard import config
from threatboard.models import (
    LogKind,
    LogTable,
    MailRow,
    MatchStrategy,
    NdrRow,
    Threat,
    WafRow,
)

logger = logging.getLogger(__name__)

WorkbookSource = Union[str, Path, bytes, io.IOBase]


class WorkbookReadError(OSError):
    """The workbook bytes could not be read or fetched."""


class WorkbookFormatError(ValueError):
    """The bytes are not a usable workbook."""


# -------------------------------------------------------------------
# Sheet names & column schemas
# -------------------------------------------------------------------

ARTICLE_SHEET_PREFIX = "뉴스기사"

LOG_SHEETS: Dict[str, LogKind] = {
    "스팸스나이퍼": LogKind.MAIL,
    "NDR로그": LogKind.NDR,
    "웹방화벽로그": LogKind.WAF,
}

ROW_TYPES = {
    LogKind.MAIL: MailRow,
    LogKind.NDR: NdrRow,
    LogKind.WAF: WafRow,
}

# How many leading rows may precede the header (merged title cells etc.)
HEADER_SCAN_ROWS = 5

# (field, header aliases, column position in the unlabeled layout)
ColumnSpec = Tuple[str, Tuple[str, ...], Optional[int]]

ARTICLE_TITLE_ALIASES = ("기사명", "기사제목", "articletitle")

ARTICLE_COLUMNS: Tuple[ColumnSpec, ...] = (
    ("title", ("제목", "title", "기사제목"), 0),
    ("source", ("출처", "언론사", "source"), 1),
    ("date", ("날짜", "일자", "게시일", "date"), 2),
    ("body", ("본문", "내용", "body", "content"), 3),
    ("tags", ("태그", "tags", "tag"), 4),
)

LOG_COLUMNS: Dict[LogKind, Tuple[ColumnSpec, ...]] = {
    LogKind.MAIL: (
        ("article_title", ARTICLE_TITLE_ALIASES, None),
        ("date", ("시간", "날짜", "수신일시", "일시", "date"), 0),
        ("subject", ("메일제목", "제목", "subject"), 1),
        ("sender", ("발신자", "보낸사람", "sender"), 2),
        ("recipient", ("수신자", "받는사람", "recipient"), 3),
        ("filter_info", ("필터정보", "필터", "filterinfo", "filter"), 4),
        ("count", ("수신건수", "건수", "count"), None),
        ("action", ("조치", "action"), None),
    ),
    LogKind.NDR: (
        ("article_title", ARTICLE_TITLE_ALIASES, None),
        ("rule_name", ("ndr_rulename", "rulename", "룰명", "탐지명"), 0),
        ("log_source", ("로그출처", "로그소스", "logsource"), 1),
        ("src_ip", ("소스ip", "출발지ip", "srcip", "sourceip"), 2),
        ("dst_ip", ("대상ip", "목적지ip", "dstip", "destinationip"), 3),
        ("det_type", ("탐지유형", "detectiontype", "유형"), 4),
        ("basis", ("탐지근거", "근거", "basis"), 5),
        ("client_ip", ("클라이언트ip", "clientip"), None),
        ("server_ip", ("서버ip", "serverip"), None),
        ("action", ("조치", "action"), None),
        ("count", ("이벤트건수", "건수", "count"), None),
    ),
    LogKind.WAF: (
        ("article_title", ARTICLE_TITLE_ALIASES, None),
        ("url_domain", ("url/도메인", "urldomain", "url", "도메인", "domain"), 0),
        ("rule_name", ("rulename", "룰명", "정책명"), 1),
        ("pattern_name", ("패턴명", "patternname", "패턴", "pattern"), 2),
        ("basis", ("탐지근거", "근거", "basis"), 3),
        ("action", ("조치", "action"), 4),
        ("count", ("이벤트건수", "건수", "count"), 5),
        ("client_ip", ("클라이언트ip", "clientip"), None),
        ("server_ip", ("서버ip", "serverip"), None),
    ),
}

DATE_FIELDS = {"date"}

# Shorter headers ("ip", "a") would be found inside too many aliases
MIN_ABBREVIATION_LENGTH = 3


# -------------------------------------------------------------------
# Cell helpers
# -------------------------------------------------------------------

def _is_blank(val: Any) -> bool:
    if val is None:
        return True
    if isinstance(val, str):
        return val.strip() == ""
    try:
        return bool(pd.isna(val))
    except (TypeError, ValueError):
        return False


def format_date(val: Any) -> str:
    """Render a date cell as YYYY-MM-DD; other values pass through as text."""
    if _is_blank(val):
        return ""
    if isinstance(val, (datetime.datetime, datetime.date)):
        return val.strftime("%Y-%m-%d")
    return cell_text(val)


def cell_text(val: Any) -> str:
    if _is_blank(val):
        return ""
    if isinstance(val, float) and val.is_integer():
        return str(int(val))
    return str(val).strip()


def normalize_header(val: Any) -> str:
    return re.sub(r"\s+", "", cell_text(val)).lower()


def find_column(
    header: Sequence[str], aliases: Sequence[str], claimed: Optional[set] = None
) -> int:
    """
    Index of the first header cell matching one of ``aliases``.

    Exact (normalized) matches win over partial ones. A partial match is
    the alias inside the header, or a header of at least
    ``MIN_ABBREVIATION_LENGTH`` characters inside the alias ("act" for
    "action"). Returns -1 if no unclaimed column matches.
    """
    claimed = claimed or set()
    wanted = [normalize_header(a) for a in aliases]
    for name in wanted:
        for idx, h in enumerate(header):
            if idx not in claimed and h and h == name:
                return idx
    for name in wanted:
        for idx, h in enumerate(header):
            if idx in claimed or not h:
                continue
            if name in h or (len(h) >= MIN_ABBREVIATION_LENGTH and h in name):
                return idx
    return -1


def map_columns(
    header: Sequence[str], schema: Sequence[ColumnSpec]
) -> Dict[str, int]:
    """Resolve every schema field to a header index (-1 when absent)."""
    claimed: set = set()
    mapping: Dict[str, int] = {}

    # exact pass first so e.g. "메일제목" is not stolen by a partial "제목"
    for field_name, aliases, _ in schema:
        wanted = {normalize_header(a) for a in aliases}
        idx = next(
            (i for i, h in enumerate(header) if h and i not in claimed and h in wanted),
            -1,
        )
        mapping[field_name] = idx
        if idx != -1:
            claimed.add(idx)

    for field_name, aliases, _ in schema:
        if mapping[field_name] != -1:
            continue
        idx = find_column(header, aliases, claimed)
        mapping[field_name] = idx
        if idx != -1:
            claimed.add(idx)

    return mapping


def positional_columns(schema: Sequence[ColumnSpec]) -> Dict[str, int]:
    return {
        field_name: (pos if pos is not None else -1)
        for field_name, _, pos in schema
    }


def fill_positions(
    mapping: Dict[str, int], schema: Sequence[ColumnSpec]
) -> Dict[str, int]:
    """Fields the header did not name read their fixed column, if it is free."""
    filled = dict(mapping)
    claimed = {idx for idx in filled.values() if idx != -1}
    for field_name, _, pos in schema:
        if filled[field_name] == -1 and pos is not None and pos not in claimed:
            filled[field_name] = pos
            claimed.add(pos)
    return filled


def _get(row: Sequence[Any], idx: int, field_name: str) -> str:
    if idx < 0 or idx >= len(row):
        return ""
    if field_name in DATE_FIELDS:
        return format_date(row[idx])
    return cell_text(row[idx])


def _find_header_row(rows: List[List[Any]], schema: Sequence[ColumnSpec]) -> int:
    # exact names only; data cells often contain words like "url" or "패턴"
    aliases = {normalize_header(a) for _, names, _ in schema for a in names}
    for i in range(min(HEADER_SCAN_ROWS, len(rows))):
        if any(normalize_header(c) in aliases for c in rows[i] if c is not None):
            return i
    return 0


def _layout(
    rows: List[List[Any]], schema: Sequence[ColumnSpec]
) -> Tuple[int, Dict[str, int], bool]:
    """Returns (header row index, field -> column, header recognized)."""
    header_idx = _find_header_row(rows, schema)
    header = [normalize_header(c) for c in rows[header_idx]] if rows else []
    mapping = map_columns(header, schema)
    recognized = any(idx != -1 for idx in mapping.values())
    if not recognized:
        mapping = positional_columns(schema)
    return header_idx, mapping, recognized


# -------------------------------------------------------------------
# Workbook reading
# -------------------------------------------------------------------

def _read_bytes(source: WorkbookSource) -> Tuple[bytes, str]:
    if isinstance(source, bytes):
        return source, "<bytes>"

    if hasattr(source, "read"):
        try:
            data = source.read()
        except OSError as exc:
            raise WorkbookReadError(f"Could not read uploaded workbook: {exc}") from exc
        name = getattr(source, "filename", None) or getattr(source, "name", "<stream>")
        return data, str(name)

    text = str(source)
    if text.startswith(("http://", "https://")):
        try:
            response = requests.get(text, timeout=config.HTTP_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise WorkbookReadError(f"Could not fetch workbook {text}: {exc}") from exc
        return response.content, text.rsplit("/", 1)[-1] or text

    path = Path(text).expanduser()
    if not path.exists():
        raise WorkbookReadError(f"Workbook not found: {path}")
    try:
        return path.read_bytes(), path.name
    except OSError as exc:
        raise WorkbookReadError(f"Could not read workbook {path}: {exc}") from exc


def open_workbook(source: WorkbookSource) -> Tuple[pd.ExcelFile, str]:
    """Read all workbook bytes and open them with pandas."""
    data, name = _read_bytes(source)
    if not data:
        raise WorkbookFormatError(f"{name} is empty")
    try:
        return pd.ExcelFile(io.BytesIO(data)), name
    except Exception as exc:
        raise WorkbookFormatError(f"{name} is not a readable workbook: {exc}") from exc


def sheet_rows(xls: pd.ExcelFile, sheet_name: str) -> List[List[Any]]:
    """Raw cell values of one sheet, blanks as None, no header inference."""
    try:
        df = xls.parse(sheet_name, header=None, dtype=object)
    except Exception as exc:
        raise WorkbookFormatError(f"Sheet {sheet_name!r} could not be parsed: {exc}") from exc

    rows = []
    for values in df.itertuples(index=False, name=None):
        rows.append([None if _is_blank(v) else v for v in values])
    return rows


# -------------------------------------------------------------------
# Articles
# -------------------------------------------------------------------

def is_article_sheet(name: str) -> bool:
    return name.strip().startswith(ARTICLE_SHEET_PREFIX)


def log_kind_for_sheet(name: str) -> Optional[LogKind]:
    return LOG_SHEETS.get(name.strip())


def parse_article_rows(
    rows: List[List[Any]], first_id: int = 1, sheet_name: str = ""
) -> List[Threat]:
    """One Threat per data row; rows without a title are skipped."""
    if not rows:
        return []

    header_idx, cols, recognized = _layout(rows, ARTICLE_COLUMNS)
    if recognized and cols["title"] == -1:
        raise WorkbookFormatError(
            f"Article sheet {sheet_name!r} has no title column"
        )

    threats: List[Threat] = []
    next_id = first_id
    for row in rows[header_idx + 1:]:
        title = _get(row, cols["title"], "title")
        if not title:
            continue
        tags_raw = _get(row, cols["tags"], "tags")
        tags = tuple(t.strip() for t in tags_raw.split(",") if t.strip())
        threats.append(Threat(
            id=next_id,
            title=title,
            source=_get(row, cols["source"], "source"),
            date=_get(row, cols["date"], "date"),
            body=_get(row, cols["body"], "body"),
            tags=tags,
        ))
        next_id += 1
    return threats


# -------------------------------------------------------------------
# Log sheets
# -------------------------------------------------------------------

def parse_log_rows(
    rows: List[List[Any]], kind: LogKind, sheet_name: str = ""
) -> LogTable:
    """
    Normalize one log sheet into typed rows.

    A sheet whose header names an article-title column is matched by title;
    any other layout is matched by keyword. In the keyword layout header
    names are used where they are recognized and every other field reads
    its fixed column.
    """
    schema = LOG_COLUMNS[kind]
    row_type = ROW_TYPES[kind]

    if not rows:
        return LogTable(kind=kind, strategy=MatchStrategy.KEYWORD, sheet_name=sheet_name)

    header_idx, cols, recognized = _layout(rows, schema)
    strategy = (
        MatchStrategy.TITLE if cols["article_title"] != -1 else MatchStrategy.KEYWORD
    )
    if not recognized:
        logger.info("%s: header not recognized, using positional columns", sheet_name)
    elif strategy is MatchStrategy.KEYWORD:
        cols = fill_positions(cols, schema)
    has_count = cols["count"] != -1

    parsed = []
    for row in rows[header_idx + 1:]:
        if all(v is None for v in row):
            continue
        values = {
            field_name: _get(row, idx, field_name)
            for field_name, idx in cols.items()
            if field_name != "count"
        }
        values["count"] = _get(row, cols["count"], "count") if has_count else None
        parsed.append(row_type(**values))

    logger.debug(
        "%s: %d %s rows, strategy=%s", sheet_name, len(parsed), kind.value, strategy.value
    )
    return LogTable(
        kind=kind,
        strategy=strategy,
        rows=parsed,
        sheet_name=sheet_name,
        has_count_column=has_count,
    )


def parse_workbook(
    source: WorkbookSource,
) -> Tuple[List[Threat], Dict[LogKind, LogTable], str]:
    """
    Read a workbook into threats and one LogTable per recognized log sheet.

    Unrecognized sheets are ignored; a workbook without any recognized sheet
    yields empty results rather than an error.
    """
    xls, name = open_workbook(source)

    threats: List[Threat] = []
    tables: Dict[LogKind, LogTable] = {}

    for sheet_name in xls.sheet_names:
        if is_article_sheet(sheet_name):
            threats.extend(parse_article_rows(
                sheet_rows(xls, sheet_name),
                first_id=len(threats) + 1,
                sheet_name=sheet_name,
            ))
            continue

        kind = log_kind_for_sheet(sheet_name)
        if kind is None:
            logger.debug("Skipping unrecognized sheet %r", sheet_name)
            continue
        tables[kind] = parse_log_rows(sheet_rows(xls, sheet_name), kind, sheet_name)

    if not threats and not tables:
        logger.warning("%s: no recognized sheets (sheets: %s)", name, ", ".join(xls.sheet_names))

    return threats, tables, name
