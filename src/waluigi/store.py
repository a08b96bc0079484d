from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

from waluigi.models import ConfigError, JobInstance
from waluigi.utils import read_jsonl, stable_json, write_jsonl


class PlanStore:
    """Artifacts of one planning run: ``jobs.jsonl`` and ``run.json``."""

    def __init__(self, run_root: Path):
        self.run_root = Path(run_root)
        self.run_id = self.run_root.name

    @property
    def jobs_path(self) -> Path:
        return self.run_root / "jobs.jsonl"

    @property
    def run_meta_path(self) -> Path:
        return self.run_root / "run.json"

    @property
    def experiment_snapshot_path(self) -> Path:
        return self.run_root / "experiment.snapshot.yaml"

    def write_jobs(self, instances: Iterable[JobInstance]) -> int:
        return write_jsonl(self.jobs_path, (inst.to_json() for inst in instances))

    def read_jobs(self) -> list[JobInstance]:
        if not self.jobs_path.exists():
            raise ConfigError(
                f"Planned jobs not found: {self.jobs_path}. "
                f"Has 'plan' been run for this directory?"
            )
        return [JobInstance.from_json(item) for item in read_jsonl(self.jobs_path)]

    def write_run_meta(self, payload: Mapping[str, Any]) -> None:
        self.run_root.mkdir(parents=True, exist_ok=True)
        self.run_meta_path.write_text(
            stable_json(dict(payload)) + "\n", encoding="utf-8"
        )

    def read_run_meta(self) -> dict[str, Any]:
        if not self.run_meta_path.exists():
            raise ConfigError(
                f"Run metadata not found: {self.run_meta_path}. "
                f"Has 'plan' been run for this directory?"
            )
        try:
            return json.loads(self.run_meta_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(
                f"Corrupt run metadata at {self.run_meta_path}: {exc}"
            ) from exc

    @classmethod
    def from_run_dir(cls, run_dir: str | Path) -> "PlanStore":
        return cls(Path(run_dir).resolve())
