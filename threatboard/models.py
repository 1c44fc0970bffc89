"""Threat board data models"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class LogKind(Enum):
    MAIL = "mail"
    NDR = "ndr"
    WAF = "waf"


class DetectionType(Enum):
    """Detection type; values are the labels shown on the board."""
    MAIL = "메일"
    NDR = "NDR"
    WAF = "웹방화벽"
    NDR_WAF = "NDR,웹방화벽"


class MatchStrategy(Enum):
    KEYWORD = "keyword"   # keyword substring over fixed fields
    TITLE = "title"       # rows carry an explicit article title column


@dataclass(frozen=True)
class Threat:
    """News article describing an external threat"""
    id: int
    title: str
    source: str = ""
    date: str = ""
    body: str = ""
    tags: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "source": self.source,
            "date": self.date,
            "body": self.body,
            "tags": list(self.tags),
        }


@dataclass
class MailRow:
    date: str = ""
    subject: str = ""
    sender: str = ""
    recipient: str = ""
    filter_info: str = ""
    article_title: str = ""
    action: str = ""
    count: Optional[str] = None   # None when the sheet has no count column


@dataclass
class NdrRow:
    rule_name: str = ""
    log_source: str = ""
    src_ip: str = ""
    dst_ip: str = ""
    det_type: str = ""
    basis: str = ""
    client_ip: str = ""
    server_ip: str = ""
    article_title: str = ""
    action: str = ""
    count: Optional[str] = None


@dataclass
class WafRow:
    url_domain: str = ""
    rule_name: str = ""
    pattern_name: str = ""
    basis: str = ""
    action: str = ""
    count: Optional[str] = None
    client_ip: str = ""
    server_ip: str = ""
    article_title: str = ""


@dataclass
class LogTable:
    """Rows of one log sheet plus the strategy its layout implies."""
    kind: LogKind
    strategy: MatchStrategy
    rows: List[object] = field(default_factory=list)
    sheet_name: str = ""
    has_count_column: bool = False


@dataclass(frozen=True)
class Detection:
    """Aggregated log evidence for one article and log kind"""
    id: int
    threat_id: Optional[int]
    type: DetectionType
    label: str
    count: int
    action: str
    source: str
    detail: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "threatId": self.threat_id,
            "type": self.type.value,
            "label": self.label,
            "count": self.count,
            "action": self.action,
            "source": self.source,
            "detail": dict(self.detail),
        }


@dataclass
class IngestStats:
    matched: Dict[str, int] = field(default_factory=dict)
    unmatched: Dict[str, int] = field(default_factory=dict)
    strategies: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Dict[str, object]]:
        return {
            "matched": dict(self.matched),
            "unmatched": dict(self.unmatched),
            "strategies": dict(self.strategies),
        }


@dataclass(frozen=True)
class IngestionBatch:
    """One ingested workbook: owns its threats and detections."""
    threats: Tuple[Threat, ...] = ()
    detections: Tuple[Detection, ...] = ()
    stats: IngestStats = field(default_factory=IngestStats)
    source_name: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.threats and not self.detections

    def get_threat(self, threat_id: int) -> Optional[Threat]:
        return next((t for t in self.threats if t.id == threat_id), None)

    def get_detection(self, detection_id: int) -> Optional[Detection]:
        return next((d for d in self.detections if d.id == detection_id), None)

    def detections_for(self, threat_id: int) -> List[Detection]:
        return [d for d in self.detections if d.threat_id == threat_id]

    def summary(self) -> Dict[str, object]:
        """Counts by detection type and event totals for the board header."""
        by_type = {t.value: 0 for t in DetectionType}
        for d in self.detections:
            by_type[d.type.value] += 1
        total = sum(d.count for d in self.detections)
        mail = sum(d.count for d in self.detections if d.type is DetectionType.MAIL)
        return {
            "threats": len(self.threats),
            "detections": len(self.detections),
            "detections_by_type": by_type,
            "total_events": total,
            "mail_events": mail,
            "network_events": total - mail,
            "unmatched_rows": dict(self.stats.unmatched),
        }


# -------------------------------------------------------------------
# Information assets
# -------------------------------------------------------------------

# Security agents tracked per asset, in display order
SECURITY_AGENTS = ("edr", "eps", "dlp", "drm", "nac", "pms")


@dataclass(frozen=True)
class Asset:
    """One IT/OT system from the asset inventory workbook"""
    id: int
    category: str = "IT"
    asset_name: str = "OA"
    ip: str = ""
    mac: str = ""
    hostname: str = ""
    os: str = ""
    model: str = ""
    manage_dept: str = ""
    manager: str = ""
    operator: str = ""
    status: str = "운영중"
    location: str = ""
    edr: bool = False
    eps: bool = False
    dlp: bool = False
    drm: bool = False
    nac: bool = False
    pms: bool = False

    def matches(self, keyword: str) -> bool:
        """Case-insensitive search over the identifying fields."""
        kw = keyword.strip().lower()
        if not kw:
            return True
        fields = (
            self.ip, self.hostname, self.asset_name, self.mac, self.os,
            self.manage_dept, self.manager, self.location,
        )
        return any(kw in f.lower() for f in fields)

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {
            "id": self.id,
            "category": self.category,
            "assetName": self.asset_name,
            "ip": self.ip,
            "mac": self.mac,
            "hostname": self.hostname,
            "os": self.os,
            "model": self.model,
            "manageDept": self.manage_dept,
            "manager": self.manager,
            "operator": self.operator,
            "status": self.status,
            "location": self.location,
        }
        for agent in SECURITY_AGENTS:
            data[agent] = getattr(self, agent)
        return data


@dataclass(frozen=True)
class AssetInventory:
    """Assets loaded from one inventory workbook."""
    assets: Tuple[Asset, ...] = ()
    source_name: str = ""
    sheet_name: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.assets

    def get_asset(self, asset_id: int) -> Optional[Asset]:
        return next((a for a in self.assets if a.id == asset_id), None)

    def filter(self, keyword: str = "", category: str = "") -> List[Asset]:
        """Assets in ``category`` (IT/OT, blank or 전체 for all) matching ``keyword``."""
        cat = category.strip().upper()
        if cat in ("", "전체", "ALL"):
            cat = ""
        return [
            a for a in self.assets
            if (not cat or a.category == cat) and a.matches(keyword)
        ]

    def summary(self) -> Dict[str, object]:
        """Totals per category and agent install rates in whole percent."""
        total = len(self.assets)
        rates = {}
        for agent in SECURITY_AGENTS:
            installed = sum(1 for a in self.assets if getattr(a, agent))
            # half rounds up
            rates[agent.upper()] = int(installed * 100 / total + 0.5) if total else 0
        return {
            "total": total,
            "it": sum(1 for a in self.assets if a.category == "IT"),
            "ot": sum(1 for a in self.assets if a.category == "OT"),
            "agent_rates": rates,
        }
