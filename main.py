#!/usr/bin/env python3
"""
BitLocker Diagnostic Collector
Runs a fixed list of collection steps and bundles the output for offline triage.
"""

import argparse
import logging
import sys
from datetime import datetime
from typing import List, Optional

from dateutil import parser as date_parser

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep collector imports lazy (inside functions) so `--help` stays fast and a broken
# optional dependency only affects the modes that need it.
#


def parse_forced_timestamp(raw: Optional[str]) -> Optional[datetime]:
    """Parse a --timestamp value (ISO 8601). Returns None when not given."""
    if not raw:
        return None
    try:
        return date_parser.isoparse(raw)
    except (ValueError, TypeError, OverflowError) as e:
        raise argparse.ArgumentTypeError(f"invalid --timestamp '{raw}': {e}") from e


def list_steps(config_file: Optional[str], as_json: bool = False) -> int:
    from collector.core.config import ConfigFileError, load_collector_config
    from collector.runner.tool_runner import ToolRunner
    from collector.sources import get_default_sources
    from collector.steps.catalog import build_default_steps, describe_steps, steps_to_json

    try:
        cfg = load_collector_config(config_file)
    except ConfigFileError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    catalog = build_default_steps(cfg, get_default_sources(ToolRunner()))
    if as_json:
        print(steps_to_json(catalog))
        return 0

    steps = describe_steps(catalog)
    for s in steps:
        flag = " [mandatory]" if s["mandatory"] else ""
        print(f"{s['step_id']}{flag}: {s['label']}")
        for i, a in enumerate(s["actions"]):
            role = "primary " if i == 0 else f"fallback{i}"
            print(f"    {role} {a}")
        for p in s["preconditions"]:
            print(f"    requires {p}")
    return 0


def collect(args: argparse.Namespace) -> int:
    import json

    from collector.core.config import ConfigFileError, load_collector_config
    from collector.core.errors import CollectorFatalError
    from collector.dump import report_to_json_dict
    from collector.pipeline import CollectionOptions, run_collection
    from collector.report import render_summary

    try:
        cfg = load_collector_config(args.config)
    except ConfigFileError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    options = CollectionOptions(
        output_path=args.output_path,
        use_temp=args.use_temp_storage,
        include_mdm=args.include_optional_diagnostics,
        archive=args.archive,
        timestamp=args.timestamp,
        verbose=args.verbose,
    )

    try:
        outcome = run_collection(options, config=cfg)
    except CollectorFatalError as e:
        print(f"✗ {type(e).__name__}: {e}", file=sys.stderr)
        return e.exit_code

    if args.dump_json:
        payload = report_to_json_dict(outcome.report)
        payload["archive_path"] = str(outcome.archive_path) if outcome.archive_path else None
        payload["exit_code"] = outcome.exit_code
        print(json.dumps(payload, indent=2, sort_keys=False))
    else:
        print("\n" + "=" * 80)
        print(render_summary(outcome.report, archive_path=outcome.archive_path))
        print("=" * 80)
    return outcome.exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Collect BitLocker diagnostics into a timestamped bundle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Collect into the current directory
  python main.py

  # Collect into a specific folder and zip the result
  python main.py --output-path D:\\support --archive

  # Include MDM enrollment diagnostics
  python main.py --include-optional-diagnostics

Exit codes: 0 all mandatory steps collected, 1 a mandatory step failed,
2 not elevated / bad config, 3 output directory or activity log could not be created.
        """,
    )

    where = parser.add_mutually_exclusive_group()
    where.add_argument("--output-path", metavar="DIR", help="Base directory for the bundle (default: current directory)")
    where.add_argument(
        "--use-temp-storage", action="store_true", help="Write the bundle under the system temp directory"
    )

    parser.add_argument(
        "--include-optional-diagnostics",
        action="store_true",
        help="Also run MdmDiagnosticsTool and copy its report into mdm/ (default: off)",
    )
    parser.add_argument("--archive", action="store_true", help="Zip the bundle to <bundle>.zip beside it")
    parser.add_argument("--config", metavar="FILE", help="YAML file overriding channels, policy keys and timeouts")
    parser.add_argument(
        "--timestamp",
        type=parse_forced_timestamp,
        metavar="ISO8601",
        help="Force the run timestamp used in the bundle name; an existing bundle with that name is an error",
    )
    parser.add_argument(
        "--dump-json",
        action="store_true",
        help="Print JSON to stdout (the run report, or the step list with --list-steps) instead of text",
    )
    parser.add_argument("--list-steps", action="store_true", help="Print the step list and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Echo the activity log to stderr")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_steps:
        return list_steps(args.config, as_json=args.dump_json)

    try:
        return collect(args)
    except Exception as e:
        print(f"✗ Error during collection: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    sys.exit(main())
