"""Information asset inventory workbook parser."""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence, Tuple

from threatboard.models import SECURITY_AGENTS, Asset, AssetInventory
from threatboard.sheet_parser import (
    HEADER_SCAN_ROWS,
    ColumnSpec,
    WorkbookSource,
    cell_text,
    map_columns,
    normalize_header,
    open_workbook,
    sheet_rows,
)

logger = logging.getLogger(__name__)

# First of these (trimmed) names wins; otherwise the first sheet is used
ASSET_SHEETS = (
    "대상 시스템", "대상시스템",
    "IT", "OT",
    "자산목록", "자산 목록",
    "기준 시트", "기준시트",
)

ASSET_COLUMNS: Tuple[ColumnSpec, ...] = (
    ("category", ("구분",), None),
    ("asset_name", ("자산정보", "자산 정보", "자산명"), None),
    ("ip", ("ip",), None),
    ("mac", ("mac",), None),
    ("hostname", ("호스트명", "hostname", "호스트"), None),
    ("os", ("os", "os버전", "os 버전"), None),
    ("model", ("모델명", "모델", "model"), None),
    ("manage_dept", ("관리부서", "운영부서", "운영 부서명", "운영부서명", "관리 부서"), None),
    ("manager", ("관리담당자", "관리 담당자", "운영담당자", "운영 담당자", "담당자"), None),
    ("operator", ("운영자",), None),
    ("status", ("상태",), None),
    ("location", ("위치", "위치정보", "위치 정보"), None),
    ("edr", ("edr",), None),
    ("eps", ("eps",), None),
    ("dlp", ("dlp",), None),
    ("drm", ("drm",), None),
    ("nac", ("nac",), None),
    ("pms", ("pms",), None),
)

# Any header cell containing one of these marks the header row
HEADER_HINTS = ("ip", "구분", "hostname", "호스트")

CATEGORIES = ("IT", "OT")
CHECKED_VALUES = {"O", "TRUE", "1", "Y", "✓"}


def pick_sheet(sheet_names: Sequence[str]) -> Optional[str]:
    for name in sheet_names:
        if name.strip() in ASSET_SHEETS:
            return name
    return sheet_names[0] if sheet_names else None


def is_checked(val: Any) -> bool:
    return cell_text(val).upper() in CHECKED_VALUES


def _find_asset_header(rows: List[List[Any]]) -> int:
    for i in range(min(HEADER_SCAN_ROWS, len(rows))):
        cells = [normalize_header(c) for c in rows[i]]
        if any(hint in c for c in cells for hint in HEADER_HINTS):
            return i
    return 0


def parse_asset_rows(rows: List[List[Any]]) -> List[Asset]:
    """
    One Asset per data row.

    Rows with neither an IP nor a hostname are skipped. Unknown categories
    become IT, a blank asset name becomes OA and a blank status 운영중.
    """
    if len(rows) < 2:
        return []

    header_idx = _find_asset_header(rows)
    header = [normalize_header(c) for c in rows[header_idx]]
    cols = map_columns(header, ASSET_COLUMNS)

    def get(row: Sequence[Any], field_name: str) -> str:
        idx = cols[field_name]
        if idx < 0 or idx >= len(row):
            return ""
        return cell_text(row[idx])

    assets: List[Asset] = []
    for row in rows[header_idx + 1:]:
        if all(v is None for v in row):
            continue
        ip = get(row, "ip")
        hostname = get(row, "hostname")
        if not ip and not hostname:
            continue

        category = get(row, "category").upper()
        agents = {agent: is_checked(get(row, agent)) for agent in SECURITY_AGENTS}
        assets.append(Asset(
            id=len(assets) + 1,
            category=category if category in CATEGORIES else "IT",
            asset_name=get(row, "asset_name") or "OA",
            ip=ip,
            mac=get(row, "mac"),
            hostname=hostname,
            os=get(row, "os"),
            model=get(row, "model"),
            manage_dept=get(row, "manage_dept"),
            manager=get(row, "manager"),
            operator=get(row, "operator"),
            status=get(row, "status") or "운영중",
            location=get(row, "location"),
            **agents,
        ))
    return assets


def load_inventory(source: WorkbookSource, source_name: Optional[str] = None) -> AssetInventory:
    """
    Read an asset workbook.

    Raises WorkbookReadError / WorkbookFormatError like the log workbook
    reader; a sheet without usable rows gives an empty inventory.
    """
    xls, name = open_workbook(source)
    sheet = pick_sheet(xls.sheet_names)
    if sheet is None:
        return AssetInventory(source_name=source_name or name)

    assets = parse_asset_rows(sheet_rows(xls, sheet))
    logger.info("%s: %d assets from sheet %r", source_name or name, len(assets), sheet)
    return AssetInventory(
        assets=tuple(assets),
        source_name=source_name or name,
        sheet_name=sheet,
    )
