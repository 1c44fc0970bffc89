import argparse
import sys
import json
import logging
import datetime
from pathlib import Path

from threatboard import config
from threatboard.asset_parser import load_inventory
from threatboard.correlation_engine import ingest_workbook
from threatboard.sheet_parser import WorkbookFormatError, WorkbookReadError

# --- CONFIGURATION ---
TOOL_NAME = "Threat Detection Board"

logger = logging.getLogger("threatboard.cli")


def configure_logging(verbosity: int) -> None:
    # Quiet by default, errors to stderr
    level = logging.ERROR
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(message)s")


def get_timestamp_str():
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d_%H-%M-%S")


def write_json(path: Path, data):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)


def cmd_analyze(args):
    source = args.workbook
    is_url = source.startswith(("http://", "https://"))
    if not is_url and not Path(source).exists():
        sys.exit(f"Error: Input file not found: {source}")

    # 1. Ingest + correlate
    try:
        batch = ingest_workbook(source)
    except (WorkbookReadError, WorkbookFormatError) as e:
        logger.error("Ingestion failed: %s", e)
        sys.exit(f"Error: {e}")

    if batch.is_empty:
        sys.exit("Error: No recognized sheets found (뉴스기사*, 스팸스나이퍼, NDR로그, 웹방화벽로그).")

    # 2. Artifacts
    run_dir = args.out / f"run_{get_timestamp_str()}"
    run_dir.mkdir(parents=True, exist_ok=True)

    write_json(run_dir / "threats.json", [t.to_dict() for t in batch.threats])
    write_json(run_dir / "detections.json", [d.to_dict() for d in batch.detections])

    summary = batch.summary()
    summary.update({
        "tool": TOOL_NAME,
        "input_file": batch.source_name,
        "stats": batch.stats.to_dict(),
        "generated_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
    })
    write_json(run_dir / "summary.json", summary)

    # 3. Console output
    _print_summary(batch, summary)
    print(f"Results saved to : {run_dir.resolve()}")

    if args.serve:
        _serve(batch, args.host, args.port)


def cmd_assets(args):
    source = args.workbook
    try:
        inventory = load_inventory(source)
    except (WorkbookReadError, WorkbookFormatError) as e:
        logger.error("Asset load failed: %s", e)
        sys.exit(f"Error: {e}")

    if inventory.is_empty:
        sys.exit("Error: No asset rows with an IP or hostname found.")

    run_dir = args.out / f"assets_{get_timestamp_str()}"
    run_dir.mkdir(parents=True, exist_ok=True)
    write_json(run_dir / "assets.json", [a.to_dict() for a in inventory.assets])

    summary = inventory.summary()
    print("=" * 36)
    print("Asset Inventory")
    print("=" * 36)
    print(f"Source           : {inventory.source_name} ({inventory.sheet_name})")
    print(f"Assets           : {summary['total']} (IT {summary['it']} / OT {summary['ot']})")
    for agent, rate in summary["agent_rates"].items():
        print(f"  {agent:<15}: {rate}%")
    print("=" * 36)
    print(f"Results saved to : {run_dir.resolve()}")


def _print_summary(batch, summary):
    print("=" * 36)
    print(TOOL_NAME)
    print("=" * 36)
    print(f"Source           : {batch.source_name}")
    print(f"Articles         : {summary['threats']}")
    print(f"Detections       : {summary['detections']}")
    for type_name, n in summary["detections_by_type"].items():
        print(f"  {type_name:<15}: {n}")
    print(f"Total Events     : {summary['total_events']}")
    unmatched = sum(batch.stats.unmatched.values())
    if unmatched:
        print(f"Unmatched Rows   : {unmatched}")
    print("=" * 36)
    for d in batch.detections:
        print(f"- {d.label}")


def _serve(batch, host, port, inventory=None):
    from threatboard.app import BatchStore, InventoryStore, create_app

    print("-" * 36)
    print(f"Starting board server at http://{host}:{port}")
    print("Press CTRL+C to stop.")
    print("-" * 36)
    app = create_app(BatchStore(batch), InventoryStore(inventory))
    app.run(host=host, port=port, debug=False)


def cmd_serve(args):
    from threatboard.app import load_initial_batch, load_initial_inventory

    path = Path(args.workbook) if args.workbook else config.DEFAULT_WORKBOOK
    assets = Path(args.assets) if args.assets else config.DEFAULT_ASSET_WORKBOOK
    _serve(load_initial_batch(path), args.host, args.port, load_initial_inventory(assets))


def main():
    parser = argparse.ArgumentParser(description=TOOL_NAME)
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v info, -vv debug")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # analyze command
    parser_analyze = subparsers.add_parser("analyze")
    parser_analyze.add_argument("workbook", help="Path or http(s) URL of the .xlsx workbook")
    parser_analyze.add_argument("--out", type=Path, default=Path("reports"), help="Output directory")
    parser_analyze.add_argument("--serve", action="store_true", help="Start the board server after analysis")
    parser_analyze.add_argument("--host", default=config.HOST)
    parser_analyze.add_argument("--port", type=int, default=config.PORT)
    parser_analyze.set_defaults(func=cmd_analyze)

    # serve command
    parser_serve = subparsers.add_parser("serve")
    parser_serve.add_argument("--workbook", help="Workbook to load at startup (default: data.xlsx)")
    parser_serve.add_argument("--assets", help="Asset workbook to load at startup (default: assets.xlsx)")
    parser_serve.add_argument("--host", default=config.HOST)
    parser_serve.add_argument("--port", type=int, default=config.PORT)
    parser_serve.set_defaults(func=cmd_serve)

    # assets command
    parser_assets = subparsers.add_parser("assets")
    parser_assets.add_argument("workbook", help="Path or http(s) URL of the asset .xlsx workbook")
    parser_assets.add_argument("--out", type=Path, default=Path("reports"), help="Output directory")
    parser_assets.set_defaults(func=cmd_assets)

    args = parser.parse_args()
    configure_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
