from __future__ import annotations

import logging
import os
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from waluigi.experiment import Experiment, Job
from waluigi.loader import load_experiment, load_programs
from waluigi.models import ConfigError, JobInstance, PlanSummary
from waluigi.programs import Program
from waluigi.store import PlanStore
from waluigi.utils import sanitize_for_path, utc_now_iso

_log = logging.getLogger("waluigi.planner")


@dataclass(frozen=True)
class LoadedPlan:
    experiment: Experiment
    programs: dict[str, Program]
    grouped: list[tuple[Job, list[JobInstance]]]

    @property
    def instances(self) -> list[JobInstance]:
        return [inst for _, instances in self.grouped for inst in instances]

    @property
    def jobs_by_program(self) -> dict[str, int]:
        counts: Counter[str] = Counter()
        for job, instances in self.grouped:
            counts[job.run] += len(instances)
        return dict(counts)


def _default_run_id(experiment_path: Path) -> str:
    stamp = utc_now_iso().replace(":", "").replace("-", "")
    return f"run_{stamp}_{sanitize_for_path(experiment_path.stem)}"


def load_and_plan(
    *,
    experiment_path: str | Path,
    program_patterns: Iterable[str | Path],
    threads: int,
) -> LoadedPlan:
    if threads <= 0:
        raise ConfigError("threads must be positive")
    programs = load_programs(program_patterns)
    experiment = load_experiment(experiment_path)
    _log.info(
        "plan_start experiment=%s programs=%d jobs=%d",
        experiment_path,
        len(programs),
        len(experiment.jobs),
    )
    grouped = experiment.plan_jobs(threads, programs)
    return LoadedPlan(experiment=experiment, programs=programs, grouped=grouped)


def plan_experiment(
    *,
    experiment_path: str | Path,
    program_patterns: Iterable[str | Path],
    out_dir: str | Path,
    threads: int,
    run_id: str | None = None,
    dry_run: bool = False,
    preview_count: int = 0,
) -> PlanSummary:
    if preview_count < 0:
        raise ConfigError("preview_count must be >= 0")

    experiment_path = Path(experiment_path)
    program_patterns = [str(pattern) for pattern in program_patterns]
    run_id = run_id or _default_run_id(experiment_path)
    run_root = Path(out_dir).resolve() / "runs" / run_id
    store = PlanStore(run_root)

    if run_root.exists() and not dry_run:
        raise ConfigError(f"Run directory already exists: {run_root}")

    loaded = load_and_plan(
        experiment_path=experiment_path,
        program_patterns=program_patterns,
        threads=threads,
    )
    instances = loaded.instances

    if not dry_run:
        store.write_jobs(instances)
        store.write_run_meta(
            {
                "run_id": run_id,
                "run_root": str(store.run_root),
                "created_at": utc_now_iso(),
                "experiment_path": str(experiment_path.resolve()),
                "program_patterns": program_patterns,
                "programs": sorted(loaded.programs),
                "threads": threads,
                "num_jobs": len(instances),
                "jobs_by_program": loaded.jobs_by_program,
                "host_user": os.environ.get("USER")
                or os.environ.get("USERNAME")
                or "unknown",
            }
        )
        store.experiment_snapshot_path.write_text(
            experiment_path.read_text(encoding="utf-8"), encoding="utf-8"
        )
        _log.info("plan_written run_root=%s jobs=%d", run_root, len(instances))

    return PlanSummary(
        run_id=run_id,
        run_root=run_root,
        total_jobs=len(instances),
        jobs_by_program=loaded.jobs_by_program,
        instances=tuple(instances),
        preview_jobs=tuple(inst.to_json() for inst in instances[:preview_count]),
    )
