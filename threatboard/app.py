from __future__ import annotations

import datetime
import io
import logging
import threading
from pathlib import Path
from typing import Optional

import pandas as pd
from flask import Flask, Response, jsonify, request
from werkzeug.utils import secure_filename

from threatboard import config
from threatboard.asset_parser import load_inventory
from threatboard.chat import auto_reply
from threatboard.correlation_engine import ingest_workbook
from threatboard.models import SECURITY_AGENTS, AssetInventory, IngestionBatch
from threatboard.sample_data import load_sample_batch
from threatboard.sheet_parser import WorkbookFormatError, WorkbookReadError

logger = logging.getLogger(__name__)


class BatchStore:
    """Holds the active ingestion batch; uploads swap it in one step."""

    def __init__(self, batch: Optional[IngestionBatch] = None):
        self._lock = threading.Lock()
        self._batch = batch or load_sample_batch()

    @property
    def batch(self) -> IngestionBatch:
        return self._batch

    def replace(self, batch: IngestionBatch) -> IngestionBatch:
        with self._lock:
            self._batch = batch
        return batch


class InventoryStore:
    """Holds the active asset inventory."""

    def __init__(self, inventory: Optional[AssetInventory] = None):
        self._lock = threading.Lock()
        self._inventory = inventory or AssetInventory()

    @property
    def inventory(self) -> AssetInventory:
        return self._inventory

    def replace(self, inventory: AssetInventory) -> AssetInventory:
        with self._lock:
            self._inventory = inventory
        return inventory


def load_initial_inventory(path: Path = config.DEFAULT_ASSET_WORKBOOK) -> AssetInventory:
    """Asset workbook next to the app if present, else an empty inventory."""
    if path.exists():
        try:
            return load_inventory(path)
        except (WorkbookReadError, WorkbookFormatError) as exc:
            logger.warning("Could not load %s: %s", path, exc)
    return AssetInventory()


def load_initial_batch(path: Path = config.DEFAULT_WORKBOOK) -> IngestionBatch:
    """Workbook next to the app if present and non-empty, else the sample data."""
    if path.exists():
        try:
            batch = ingest_workbook(path)
        except (WorkbookReadError, WorkbookFormatError) as exc:
            logger.warning("Could not load %s: %s", path, exc)
        else:
            if not batch.is_empty:
                return batch
    return load_sample_batch()


def _csv_response(df: pd.DataFrame, filename: str) -> Response:
    out = io.StringIO()
    df.to_csv(out, index=False)
    out.seek(0)
    return Response(
        # BOM so spreadsheet tools pick up UTF-8 Hangul
        "\ufeff" + out.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def _xlsx_response(df: pd.DataFrame, filename: str, sheet_name: str) -> Response:
    out = io.BytesIO()
    with pd.ExcelWriter(out, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)
    return Response(
        out.getvalue(),
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def _posted_workbook():
    """(file, safe filename, error message) for the "workbook" form field."""
    workbook = request.files.get("workbook")
    if not workbook or workbook.filename == "":
        return None, "", "Please upload an .xlsx workbook."

    filename = secure_filename(workbook.filename) or "workbook.xlsx"
    if not filename.lower().endswith(config.ALLOWED_EXTENSIONS):
        return None, filename, f"Unsupported file type: {filename}"
    return workbook, filename, None


# Column titles of the asset spreadsheet export
ASSET_EXPORT_COLUMNS = {
    "category": "구분",
    "assetName": "자산정보",
    "ip": "IP",
    "mac": "MAC",
    "hostname": "호스트명",
    "os": "OS",
    "model": "모델명",
    "manageDept": "관리부서",
    "manager": "관리담당자",
    "operator": "운영자",
    "status": "상태",
    "location": "위치",
}


def create_app(
    store: Optional[BatchStore] = None,
    inventory_store: Optional[InventoryStore] = None,
) -> Flask:
    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_CONTENT_LENGTH
    app.json.ensure_ascii = False

    store = store or BatchStore()
    inventory_store = inventory_store or InventoryStore()
    app.extensions["threatboard"] = store
    app.extensions["threatboard.assets"] = inventory_store

    def current() -> IngestionBatch:
        return store.batch

    # -------------------------------------------------------------------
    # Upload
    # -------------------------------------------------------------------
    @app.route("/upload", methods=["POST"])
    def upload():
        workbook, filename, error = _posted_workbook()
        if error:
            return jsonify(error=error), 400

        try:
            batch = ingest_workbook(workbook.stream.read(), source_name=filename)
        except (WorkbookReadError, WorkbookFormatError) as exc:
            logger.error("Upload %s rejected: %s", filename, exc)
            return jsonify(error=str(exc)), 400

        if batch.is_empty:
            return jsonify(
                error="No recognized sheets found. Check the sheet names.",
                loaded=False,
            ), 422

        store.replace(batch)
        return jsonify(
            loaded=True,
            source=batch.source_name,
            threats=len(batch.threats),
            detections=len(batch.detections),
            stats=batch.stats.to_dict(),
        )

    # -------------------------------------------------------------------
    # Threats
    # -------------------------------------------------------------------
    @app.route("/api/threats")
    def list_threats():
        q = (request.args.get("q") or "").strip().lower()
        threats = current().threats
        if q:
            threats = [
                t for t in threats
                if q in t.title.lower() or any(q in tag.lower() for tag in t.tags)
            ]
        return jsonify([t.to_dict() for t in threats])

    @app.route("/api/threats/<int:threat_id>")
    def threat_detail(threat_id: int):
        batch = current()
        threat = batch.get_threat(threat_id)
        if threat is None:
            return jsonify(error="Threat not found"), 404
        return jsonify(
            threat=threat.to_dict(),
            detections=[d.to_dict() for d in batch.detections_for(threat_id)],
        )

    # -------------------------------------------------------------------
    # Detections
    # -------------------------------------------------------------------
    @app.route("/api/detections")
    def list_detections():
        wanted = (request.args.get("type") or "").strip()
        detections = current().detections
        if wanted:
            # "NDR" also lists merged NDR,웹방화벽 records; enum names work too
            detections = [
                d for d in detections
                if wanted in d.type.value or wanted.upper() in d.type.name.split("_")
            ]
        return jsonify([d.to_dict() for d in detections])

    @app.route("/api/detections/<int:detection_id>")
    def detection_detail(detection_id: int):
        detection = current().get_detection(detection_id)
        if detection is None:
            return jsonify(error="Detection not found"), 404
        return jsonify(detection.to_dict())

    @app.route("/api/summary")
    def summary():
        batch = current()
        data = batch.summary()
        data["source"] = batch.source_name
        data["strategies"] = dict(batch.stats.strategies)
        return jsonify(data)

    @app.route("/api/ask", methods=["POST"])
    def ask():
        payload = request.get_json(silent=True) or {}
        text = payload.get("message") or request.form.get("message", "")
        return jsonify(reply=auto_reply(current(), text))

    # -------------------------------------------------------------------
    # CSV exports
    # -------------------------------------------------------------------
    @app.route("/api/threats.csv")
    def export_threats_csv():
        threats = current().threats
        if not threats:
            return "No threats available", 404
        df = pd.DataFrame([t.to_dict() for t in threats])
        df["tags"] = df["tags"].apply(lambda lst: ",".join(lst))
        return _csv_response(df, "threats.csv")

    @app.route("/api/detections.csv")
    def export_detections_csv():
        detections = current().detections
        if not detections:
            return "No detections available", 404
        rows = []
        for d in detections:
            row = d.to_dict()
            detail = row.pop("detail")
            row["detail"] = " | ".join(f"{k}: {v}" for k, v in detail.items())
            rows.append(row)
        return _csv_response(pd.DataFrame(rows), "detections.csv")

    # -------------------------------------------------------------------
    # Asset inventory
    # -------------------------------------------------------------------
    def filtered_assets():
        return inventory_store.inventory.filter(
            request.args.get("q") or "", request.args.get("category") or ""
        )

    @app.route("/upload/assets", methods=["POST"])
    def upload_assets():
        workbook, filename, error = _posted_workbook()
        if error:
            return jsonify(error=error), 400

        try:
            inventory = load_inventory(workbook.stream.read(), source_name=filename)
        except (WorkbookReadError, WorkbookFormatError) as exc:
            logger.error("Asset upload %s rejected: %s", filename, exc)
            return jsonify(error=str(exc)), 400

        if inventory.is_empty:
            return jsonify(error="No asset rows with an IP or hostname found.", loaded=False), 422

        inventory_store.replace(inventory)
        return jsonify(
            loaded=True,
            source=inventory.source_name,
            sheet=inventory.sheet_name,
            assets=len(inventory.assets),
        )

    @app.route("/api/assets")
    def list_assets():
        return jsonify([a.to_dict() for a in filtered_assets()])

    @app.route("/api/assets/<int:asset_id>")
    def asset_detail(asset_id: int):
        asset = inventory_store.inventory.get_asset(asset_id)
        if asset is None:
            return jsonify(error="Asset not found"), 404
        return jsonify(asset.to_dict())

    @app.route("/api/assets/summary")
    def asset_summary():
        inventory = inventory_store.inventory
        data = inventory.summary()
        data["source"] = inventory.source_name
        return jsonify(data)

    @app.route("/api/assets.xlsx")
    def export_assets_xlsx():
        assets = filtered_assets()
        if not assets:
            return "No assets available", 404
        df = pd.DataFrame([a.to_dict() for a in assets])
        for agent in SECURITY_AGENTS:
            df[agent] = df[agent].map(lambda installed: "O" if installed else "X")
        df = df.drop(columns=["id"]).rename(
            columns={**ASSET_EXPORT_COLUMNS, **{a: a.upper() for a in SECURITY_AGENTS}}
        )
        stamp = datetime.date.today().strftime("%Y%m%d")
        return _xlsx_response(df, f"assets_{stamp}.xlsx", "정보자산목록")

    return app


app = create_app(inventory_store=InventoryStore(load_initial_inventory()))
