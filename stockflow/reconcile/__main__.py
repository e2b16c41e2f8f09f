"""
CLI entry point for stock reconciliation.

Usage:
    python -m stockflow.reconcile --data exports/
    python -m stockflow.reconcile --data exports/ --item AB-12
    python -m stockflow.reconcile --data exports/ --output-csv indents.csv --output-xlsx stock.xlsx
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import DEFAULT_CONFIG_PATH, ConfigError, load_config
from .engine import ReconciliationEngine
from .report import (
    export_csv, export_xlsx, format_console, generate_report_filename,
)
from .sources import FileRecordSource


def main():
    parser = argparse.ArgumentParser(
        prog="stockflow.reconcile",
        description="Stock reconciliation - closing stock per item and indent allocation",
    )

    parser.add_argument(
        "--data",
        required=True,
        metavar="DIR",
        help="Directory holding <collection>.json/.csv/.xlsx exports",
    )

    parser.add_argument(
        "--config",
        default=None,
        metavar="FILE",
        help="Field config file (default: module's reconcile_config.json)",
    )

    parser.add_argument(
        "--item",
        metavar="CODE",
        help="Only show derived quantities for this item code or name",
    )

    parser.add_argument(
        "--output-csv",
        metavar="FILE",
        help="Write the indent allocation table to this CSV file",
    )

    parser.add_argument(
        "--output-xlsx",
        metavar="FILE",
        help="Write indents and stock sheets to this XLSX file",
    )

    parser.add_argument(
        "--show-closed",
        action="store_true",
        help="Include CLOSED indent lines in console output",
    )

    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Suppress console output (only write files)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config_path = Path(args.config) if args.config else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    try:
        config = load_config(config_path)
        source = FileRecordSource(args.data)
        engine = ReconciliationEngine(source, config)

        if args.item:
            derived = engine.derived_for(engine.find_item(args.item))
            if not derived.matched:
                print(f"Warning: No supply records match {args.item}", file=sys.stderr)
            derived_rows = [derived]
        else:
            derived_rows = engine.derived_for_all()

        results = engine.allocate()
        if args.item:
            key = engine.supply.key_for(derived_rows[0].item)
            results = [r for r in results if r.supply_key == key]

        if not args.quiet:
            print(format_console(results, derived_rows, show_closed=args.show_closed))

        if args.output_csv:
            output_path = Path(args.output_csv)
            with open(output_path, "w", newline="") as f:
                export_csv(results, output=f)
            if not args.quiet:
                print(f"\nCSV exported to: {output_path}")

        if args.output_xlsx:
            output_path = Path(args.output_xlsx)
            if output_path.is_dir():
                output_path = output_path / generate_report_filename(extension="xlsx")
            export_xlsx(results, derived_rows, path=output_path)
            if not args.quiet:
                print(f"XLSX exported to: {output_path}")

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
