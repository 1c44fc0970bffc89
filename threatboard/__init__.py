"""Threat news / security log correlation board"""

from .asset_parser import load_inventory
from .correlation_engine import build_batch, ingest_workbook
from .keywords import extract_keywords
from .matcher import ThreatMatcher
from .models import (
    Asset,
    AssetInventory,
    Detection,
    DetectionType,
    IngestionBatch,
    LogKind,
    Threat,
)
from .sheet_parser import WorkbookFormatError, WorkbookReadError

VERSION = "0.1.0"

__all__ = [
    "VERSION",
    "Asset",
    "AssetInventory",
    "Detection",
    "DetectionType",
    "IngestionBatch",
    "LogKind",
    "Threat",
    "ThreatMatcher",
    "WorkbookFormatError",
    "WorkbookReadError",
    "build_batch",
    "extract_keywords",
    "ingest_workbook",
    "load_inventory",
]
