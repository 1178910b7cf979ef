"""Command line interface.

Exit codes: 0 success, 1 fatal error, 2 invalid declarations or configuration,
3 nothing to change, 4 apply finished with failed or skipped entries.
"""

# ruff: noqa: T201

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from dataclasses import replace
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from provisio.app import (
    apply_deployment,
    destroy_deployment,
    force_unlock,
    init_environment,
    list_state,
    load_deployment,
    plan_deployment,
)
from provisio.config import ConfigurationError, configure_logging, get_engine_config
from provisio.domain.errors import CycleError, SchemaError
from provisio.domain.model import ChangeAction

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from provisio.config import EngineConfig
    from provisio.domain.reconciliation import ApplyReport, ChangeSetEntry, Plan

log = logging.getLogger(__name__)


class ExitCode(IntEnum):
    OK = 0
    FATAL = 1
    INVALID = 2
    NO_CHANGES = 3
    PARTIAL = 4


_SYMBOLS = {
    ChangeAction.CREATE: "+",
    ChangeAction.UPDATE: "~",
    ChangeAction.DELETE: "-",
    ChangeAction.REPLACE: "-/+",
}


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-e",
        "--environment",
        default=os.getenv("PROVISIO_ENVIRONMENT", "dev"),
        help="Environment whose declarations to use (default: %(default)s)",
    )
    common.add_argument(
        "--config-dir",
        type=Path,
        default=Path(os.getenv("PROVISIO_CONFIG_DIR", ".")),
        help="Directory holding common.toml and <environment>.toml (default: %(default)s)",
    )
    common.add_argument(
        "--workers",
        type=int,
        help="Maximum concurrent provider operations (defaults to config)",
    )
    common.add_argument(
        "--timeout",
        type=float,
        help="Cancel the run after this many seconds (defaults to config)",
    )
    common.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")

    parser = argparse.ArgumentParser(description="Reconcile declared cloud resources")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser(
        "init", parents=[common], help="Create the state database and an environment file"
    )
    init.add_argument("--deployment", type=str, help="Deployment name for a new environment")
    init.add_argument(
        "--location", type=str, default="westeurope", help="Default Azure region"
    )

    subparsers.add_parser("validate", parents=[common], help="Validate declarations only")
    subparsers.add_parser("plan", parents=[common], help="Show the changes apply would make")
    subparsers.add_parser("apply", parents=[common], help="Reconcile the deployment")
    subparsers.add_parser("destroy", parents=[common], help="Delete every recorded resource")

    state = subparsers.add_parser("state", help="Inspect recorded state")
    state_sub = state.add_subparsers(dest="state_command", required=True)
    state_sub.add_parser("list", parents=[common], help="List recorded resources")

    subparsers.add_parser(
        "force-unlock", parents=[common], help="Remove a stale run lock of the deployment"
    )

    args = parser.parse_args(list(argv))
    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")
    if args.timeout is not None and args.timeout <= 0:
        parser.error("--timeout must be positive")
    return args


def _engine_config(args: argparse.Namespace) -> EngineConfig:
    config = get_engine_config()
    if args.workers is not None:
        config = replace(config, workers=args.workers)
    if args.timeout is not None:
        config = replace(config, run_timeout=args.timeout)
    return config


def _describe(entry: ChangeSetEntry) -> str:
    symbol = _SYMBOLS.get(entry.action, " ")
    if entry.replacement is not None and entry.action is not ChangeAction.REPLACE:
        symbol = "-/+"
    line = f"{symbol} {entry.describe()}"
    if entry.reason:
        line += f"  # {entry.reason}"
    if entry.drift:
        line += " (drift)"
    return line


def render_plan(plan: Plan) -> None:
    if not plan:
        print("No changes. Recorded state matches the declarations.")
        return
    for intent in plan.changeset.interrupted:
        print(f"! interrupted {intent.action} on {intent.identity}; provider state re-read")
    for index, phase in enumerate(plan.phases, start=1):
        print(f"Phase {index}:")
        for entry in phase:
            print(f"  {_describe(entry)}")
            for item in entry.diffs:
                marker = " (forces replacement)" if item.immutable else ""
                print(f"      {item.name}: {item.old!r} -> {item.new!r}{marker}")
    counts = plan.changeset.counts()
    print(
        f"Plan: {counts[ChangeAction.CREATE]} to create, {counts[ChangeAction.UPDATE]} to update, "
        f"{counts[ChangeAction.REPLACE]} to replace, {counts[ChangeAction.DELETE]} to delete."
    )


def render_apply(report: ApplyReport) -> None:
    result = report.result
    for outcome in result.outcomes:
        detail = f" ({outcome.error})" if outcome.error is not None else ""
        print(f"{outcome.status:>9} {outcome.entry.describe()}{detail}")
    if result.cancelled:
        print("Run cancelled; remaining entries were not started.")
    print(
        f"Apply: {len(result.succeeded)} succeeded, {len(result.failed)} failed, "
        f"{len(result.skipped)} skipped."
    )


def _apply_exit_code(report: ApplyReport) -> ExitCode:
    if not report.has_changes:
        return ExitCode.NO_CHANGES
    return ExitCode.PARTIAL if report.partial else ExitCode.OK


def _install_cancel_handler(cancel_event: threading.Event) -> None:
    """First Ctrl+C stops dispatching new operations; a second one aborts."""

    def handler(_signal_received: int, _frame: FrameType | None) -> None:
        if cancel_event.is_set():
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt
        log.warning("Cancelling after in-flight operations finish (Ctrl+C again to abort)")
        cancel_event.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, handler)


def run(args: argparse.Namespace) -> ExitCode:
    config_dir: Path = args.config_dir
    environment: str = args.environment

    if args.command == "init":
        path = init_environment(
            config_dir, environment, deployment=args.deployment, location=args.location
        )
        print(f"Initialised state database; declarations in {path}")
        return ExitCode.OK
    if args.command == "validate":
        deployment = load_deployment(config_dir, environment)
        print(
            f"Declarations of {deployment.name} ({environment}) are valid: "
            f"{len(deployment.declarations)} resource(s)."
        )
        return ExitCode.OK
    if args.command == "plan":
        report = plan_deployment(config_dir, environment, engine_config=_engine_config(args))
        render_plan(report.plan)
        return ExitCode.OK if report.has_changes else ExitCode.NO_CHANGES
    if args.command in {"apply", "destroy"}:
        cancel_event = threading.Event()
        _install_cancel_handler(cancel_event)
        operation = apply_deployment if args.command == "apply" else destroy_deployment
        report = operation(
            config_dir,
            environment,
            engine_config=_engine_config(args),
            cancel_event=cancel_event,
        )
        render_plan(report.plan)
        if report.has_changes:
            render_apply(report)
        return _apply_exit_code(report)
    if args.command == "state" and args.state_command == "list":
        for record in list_state(config_dir, environment):
            print(f"{record.identity}\t{record.provider_id}\t{record.updated_at.isoformat()}")
        return ExitCode.OK
    if args.command == "force-unlock":
        released = force_unlock(config_dir, environment)
        print("Lock released." if released else "No lock was held.")
        return ExitCode.OK
    raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        code = run(parsed_args)
    except (SchemaError, CycleError) as exc:
        log.error("Invalid declarations: %s", exc)  # noqa: TRY400
        code = ExitCode.INVALID
    except ConfigurationError as exc:
        log.error("Invalid configuration: %s", exc)  # noqa: TRY400
        code = ExitCode.INVALID
    except Exception:
        log.exception("Fatal error during %s", parsed_args.command)
        code = ExitCode.FATAL

    if code is not ExitCode.OK:
        sys.exit(int(code))


if __name__ == "__main__":
    main()
