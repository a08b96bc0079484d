from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Any, Sequence

import yaml
from rich.console import Console
from rich.table import Table

from waluigi._logging import LEVEL_NAMES, setup_logging
from waluigi.models import ConfigError, JobInstance, PlanningError
from waluigi.planner import load_and_plan, plan_experiment
from waluigi.store import PlanStore
from waluigi.utils import env_default, stable_json

_cli_log = logging.getLogger("waluigi.cli")


def _console() -> Console:
    return Console(highlight=False)


def _short_text(value: object, *, width: int = 100) -> str:
    text = str(value)
    return text if len(text) <= width else f"{text[: max(width - 3, 1)]}..."


def _default_threads() -> int:
    raw = env_default("WALUIGI_THREADS", "1")
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"WALUIGI_THREADS must be an integer, got {raw!r}") from exc


def _print_jsonl(instances: Sequence[JobInstance]) -> None:
    for inst in instances:
        print(stable_json(inst.to_json()))


def _render_counts_table(title: str, counts: dict[str, int]) -> Table:
    table = Table(title=title)
    table.add_column("Program", style="bold")
    table.add_column("Jobs", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    if not counts:
        table.add_row("<none>", "0")
    return table


def _render_jobs_table(title: str, jobs: Sequence[dict[str, Any]]) -> Table:
    table = Table(title=title)
    table.add_column("ID", justify="right", style="bold")
    table.add_column("Depends")
    table.add_column("Threads", justify="right")
    table.add_column("Command")
    for job in jobs:
        depends = ",".join(str(item) for item in job.get("depends", [])) or "-"
        table.add_row(
            str(job.get("id", "")),
            _short_text(depends, width=40),
            str(job.get("threads", "")),
            _short_text(job.get("command", ""), width=120),
        )
    return table


def _render_plan_table(payload: dict[str, Any]) -> None:
    console = _console()
    overview = Table(title="Plan Summary", show_header=False)
    overview.add_column("Field", style="bold cyan")
    overview.add_column("Value")
    overview.add_row("Run ID", str(payload.get("run_id", "")))
    overview.add_row("Run Root", str(payload.get("run_root", "")))
    overview.add_row("Jobs", str(payload.get("total_jobs", 0)))
    overview.add_row("Threads", str(payload.get("threads", "")))
    overview.add_row("Dry Run", str(payload.get("dry_run", False)))
    console.print(overview)
    counts = dict(payload.get("jobs_by_program", {}))
    console.print(_render_counts_table("Jobs By Program", counts))

    preview_jobs = [dict(item) for item in payload.get("preview_jobs", [])]
    if preview_jobs:
        console.print(_render_jobs_table("Preview Jobs", preview_jobs))


def _cmd_plan(args: argparse.Namespace) -> int:
    threads = args.threads if args.threads is not None else _default_threads()
    summary = plan_experiment(
        experiment_path=args.experiment,
        program_patterns=args.programs,
        out_dir=args.out,
        threads=threads,
        run_id=args.run_id,
        dry_run=args.dry_run,
        preview_count=args.preview_jobs,
    )
    if args.format == "jsonl":
        _print_jsonl(summary.instances)
        return 0

    payload = {
        "run_id": summary.run_id,
        "run_root": str(summary.run_root),
        "total_jobs": summary.total_jobs,
        "jobs_by_program": summary.jobs_by_program,
        "threads": threads,
        "jobs_path": (
            str(PlanStore(summary.run_root).jobs_path) if not args.dry_run else None
        ),
        "dry_run": args.dry_run,
        "preview_jobs": list(summary.preview_jobs),
    }
    if args.format == "json":
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        _render_plan_table(payload)
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    loaded = load_and_plan(
        experiment_path=args.experiment,
        program_patterns=args.programs,
        threads=1,
    )
    payload: dict[str, Any] = {
        "valid": True,
        "programs": sorted(loaded.programs),
        "num_jobs": len(loaded.experiment.jobs),
        "num_instances": len(loaded.instances),
        "jobs_by_program": loaded.jobs_by_program,
    }
    if args.format == "json":
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    console = _console()
    table = Table(title="Validation Summary", show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    table.add_row("Valid", "true")
    table.add_row("Programs", ", ".join(payload["programs"]))
    table.add_row("Jobs", str(payload["num_jobs"]))
    table.add_row("Instances", str(payload["num_instances"]))
    console.print(table)
    return 0


def _cmd_show_jobs(args: argparse.Namespace) -> int:
    store = PlanStore.from_run_dir(args.run_dir)
    instances = store.read_jobs()
    if args.format == "jsonl":
        _print_jsonl(instances)
        return 0
    if args.format == "json":
        print(
            json.dumps([inst.to_json() for inst in instances], indent=2, sort_keys=True)
        )
        return 0
    _console().print(
        _render_jobs_table(
            f"Jobs ({store.run_id})", [inst.to_json() for inst in instances]
        )
    )
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="waluigi", description="Waluigi experiment planner"
    )
    parser.add_argument(
        "--log-level",
        choices=[name.lower() for name in LEVEL_NAMES],
        default=None,
        help="Stream log level (default: $WALUIGI_LOG_LEVEL or warning)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (default: $WALUIGI_LOG_FILE)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def _add_input_args(target: argparse.ArgumentParser) -> None:
        target.add_argument("--experiment", required=True, help="Experiment YAML")
        target.add_argument(
            "--programs",
            action="append",
            required=True,
            help="Glob pattern of program YAML files (repeatable)",
        )

    plan = sub.add_parser("plan", help="Plan job instances for an experiment")
    _add_input_args(plan)
    plan.add_argument("--out", required=True, help="Output directory root")
    plan.add_argument(
        "--threads",
        type=int,
        default=None,
        help="Thread hint copied into every job (default: $WALUIGI_THREADS or 1)",
    )
    plan.add_argument("--run-id", default=None)
    plan.add_argument("--dry-run", action="store_true")
    plan.add_argument(
        "--preview-jobs",
        type=int,
        default=0,
        help="Include first N planned jobs in output (works with --dry-run).",
    )
    plan.add_argument(
        "--format", choices=["json", "jsonl", "table"], default="table"
    )
    plan.set_defaults(handler=_cmd_plan)

    validate = sub.add_parser(
        "validate", help="Load programs and experiment and check that they plan"
    )
    _add_input_args(validate)
    validate.add_argument("--format", choices=["json", "table"], default="table")
    validate.set_defaults(handler=_cmd_validate)

    show = sub.add_parser("show-jobs", help="Show the jobs of a planned run")
    show.add_argument("--run-dir", required=True, help="Run directory")
    show.add_argument(
        "--format", choices=["json", "jsonl", "table"], default="table"
    )
    show.set_defaults(handler=_cmd_show_jobs)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = parser.parse_args(raw_argv)
    setup_logging(level=args.log_level, log_file=args.log_file)
    command = str(getattr(args, "command", "unknown"))
    started = time.perf_counter()
    _cli_log.info("cli_command_start command=%s argv=%s", command, " ".join(raw_argv))

    exit_code = 1
    try:
        exit_code = int(args.handler(args))
    except ConfigError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=config error=%s", command, exc
        )
        print(f"[config error] {exc}", file=sys.stderr)
        exit_code = 2
    except PlanningError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s",
            command,
            type(exc).__name__,
            exc,
        )
        print(f"[plan error] {exc}", file=sys.stderr)
        exit_code = 2
    except KeyboardInterrupt:
        _cli_log.error("cli_command_error command=%s kind=interrupted", command)
        print("\n[interrupted]", file=sys.stderr)
        exit_code = 130
    except RuntimeError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=runtime error=%s", command, exc
        )
        print(f"[runtime error] {exc}", file=sys.stderr)
        exit_code = 1
    except (OSError, yaml.YAMLError, json.JSONDecodeError, KeyError, ValueError) as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s",
            command,
            type(exc).__name__,
            exc,
        )
        print(f"[error] {type(exc).__name__}: {exc}", file=sys.stderr)
        exit_code = 1
    finally:
        duration_sec = time.perf_counter() - started
        _cli_log.info(
            "cli_command_end command=%s exit_code=%s duration_sec=%.3f",
            command,
            exit_code,
            duration_sec,
        )

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
