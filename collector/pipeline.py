"""Collection run orchestrator.

PrivilegeGuard gate -> output layout -> activity log -> step executor -> packager (optional).

Fatal errors (PermissionDenied, OutputInitFailed, LogSinkUnavailable) propagate to the caller;
everything that happens inside a step is already contained by the executor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from collector import packager
from collector.core.activity_log import ActivityLog
from collector.core.config import CollectorConfig, load_collector_config
from collector.core.errors import EXIT_MANDATORY_FAILED, EXIT_OK
from collector.core.layout import init_run
from collector.core.models import RunReport
from collector.core.privilege import PrivilegeGuard
from collector.dump import write_report_json
from collector.runner.tool_runner import CommandRunner, ToolRunner
from collector.sources import Sources, get_default_sources
from collector.steps.base import Step
from collector.steps.catalog import build_default_steps
from collector.steps.executor import StepExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionOptions:
    output_path: Optional[str] = None
    use_temp: bool = False
    include_mdm: bool = False
    archive: bool = False
    timestamp: Optional[datetime] = None
    verbose: bool = False


@dataclass
class CollectionOutcome:
    report: RunReport
    exit_code: int
    archive_path: Optional[Path] = None


def exit_code_for(report: RunReport) -> int:
    """0 when every mandatory step collected its data (directly or via fallback); optional steps never matter."""
    return EXIT_OK if report.exit_ready else EXIT_MANDATORY_FAILED


def run_collection(
    options: CollectionOptions,
    *,
    config: Optional[CollectorConfig] = None,
    guard: Optional[PrivilegeGuard] = None,
    runner: Optional[CommandRunner] = None,
    sources: Optional[Sources] = None,
    steps: Optional[Sequence[Step]] = None,
) -> CollectionOutcome:
    cfg = config or load_collector_config()
    guard = guard or PrivilegeGuard(bypass=cfg.skip_elevation_check)

    # Must run before anything touches the filesystem.
    elevated = guard.require_elevated()

    # The catalog is built before the output directory so a bad catalog leaves nothing behind.
    runner = runner or ToolRunner(default_timeout=float(cfg.tool_timeout_seconds))
    if sources is None:
        sources = get_default_sources(
            runner, timeout=float(cfg.tool_timeout_seconds), diagnostics_timeout=float(cfg.mdm_timeout_seconds)
        )
    step_list = list(steps) if steps is not None else build_default_steps(cfg, sources)

    ctx = init_run(
        options.output_path or cfg.output_path,
        options.use_temp,
        product_name=cfg.product_name,
        elevated=elevated,
        include_mdm=options.include_mdm,
        archive=options.archive,
        timestamp=options.timestamp,
    )
    logger.info("Output directory: %s", ctx.output_root)

    archive_path: Optional[Path] = None
    with ActivityLog.open(ctx.log_path, echo=options.verbose) as log:
        log.info(f"{ctx.product_name} collection started: run_id={ctx.run_id} output_root={ctx.output_root}")
        log.info(
            f"Options: include_optional_diagnostics={ctx.include_mdm} archive={ctx.archive} "
            f"use_temp_storage={ctx.use_temp}"
        )
        if guard.bypass:
            log.warn("Elevation check bypassed (COLLECTOR_SKIP_ELEVATION_CHECK); privileged steps may fail")

        executor = StepExecutor(ctx, runner=runner, log=log, tool_timeout=float(cfg.tool_timeout_seconds))
        report = executor.run(step_list)

        try:
            write_report_json(report, ctx.report_path)
        except OSError as e:
            log.warn(f"Could not write {ctx.report_path.name}: {e}")

        if ctx.archive:
            log.info("Archiving output directory")
            log.flush()
            try:
                archive_path = packager.archive(ctx.output_root)
                log.info(f"Archive written: {archive_path}")
            except Exception as e:
                archive_path = None
                log.warn(f"Archive creation failed ({e}); the output directory remains the authoritative copy")

        exit_code = exit_code_for(report)
        failures = report.mandatory_failures()
        if failures:
            log.error("Mandatory steps not collected: " + ", ".join(r.step_id for r in failures))
        log.info(f"Collection finished: exit_code={exit_code}")

    return CollectionOutcome(report=report, exit_code=exit_code, archive_path=archive_path)
