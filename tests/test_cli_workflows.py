from __future__ import annotations

import json
from pathlib import Path

import pytest

from waluigi.cli import main
from waluigi.models import FUTURE, ConfigError, JobInstance
from waluigi.planner import plan_experiment
from waluigi.store import PlanStore


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content.strip() + "\n", encoding="utf-8")


def _setup_specs(tmp_path: Path) -> tuple[Path, str]:
    _write(
        tmp_path / "programs" / "gen.yaml",
        """
name: gen
bin: gen
format: "--seed <seed> --out <out>"
outputs:
  graph:
    msg: generated graph path
fields:
  seed:
    type: uint
  out:
    type: path
  weighted:
    type: bool
    option: --weighted
""",
    )
    _write(
        tmp_path / "programs" / "solve.yaml",
        """
name: solve
bin: solve
format: "<graph>"
outputs:
  ratio:
    msg: approximation ratio
    aka: [r]
fields:
  graph:
    type: str
  alpha:
    type: float
    aka: ["α"]
    option: "--alpha <alpha>"
    batch: {join: ","}
""",
    )
    experiment = tmp_path / "experiment.yaml"
    _write(
        experiment,
        """
jobs:
  - run: gen
    parameters:
      seed: {from: 1, to: 3, step: 1}
      out: graphs/
      weighted: [true, false]
    repetitions: 2
  - run: solve
    on_each: [gen]
    parameters:
      alpha: [0.1, 0.5]
""",
    )
    return experiment, str(tmp_path / "programs" / "*.yaml")


def test_plan_writes_jobs_and_run_metadata(tmp_path: Path, capsys) -> None:
    experiment, programs = _setup_specs(tmp_path)
    out_dir = tmp_path / "out"

    exit_code = main(
        [
            "plan",
            "--experiment",
            str(experiment),
            "--programs",
            programs,
            "--out",
            str(out_dir),
            "--threads",
            "6",
            "--run-id",
            "sweep",
            "--preview-jobs",
            "2",
            "--format",
            "json",
        ]
    )
    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["total_jobs"] == 36
    assert payload["jobs_by_program"] == {"gen": 12, "solve": 24}
    assert [item["command"] for item in payload["preview_jobs"]] == [
        "gen --seed 1 --out graphs/ --weighted",
        "gen --seed 1 --out graphs/",
    ]

    store = PlanStore(out_dir / "runs" / "sweep")
    jobs = store.read_jobs()
    assert [job.id for job in jobs] == list(range(36))
    assert all(job.threads == 6 and job.log == "" for job in jobs)

    gen_ids = {job.id for job in jobs[:12]}
    for job in jobs[12:]:
        assert len(job.depends) == 1 and job.depends[0] in gen_ids
        assert job.params["graph"] is FUTURE
    assert jobs[12].command == "solve  --alpha 0.1"

    meta = store.read_run_meta()
    assert meta["run_id"] == "sweep"
    assert meta["num_jobs"] == 36
    assert meta["programs"] == ["gen", "solve"]
    assert store.experiment_snapshot_path.exists()

    raw_lines = store.jobs_path.read_text(encoding="utf-8").splitlines()
    assert json.loads(raw_lines[12])["params"]["graph"] is None


def test_plan_dry_run_streams_jsonl_without_writing(tmp_path: Path, capsys) -> None:
    experiment, programs = _setup_specs(tmp_path)
    out_dir = tmp_path / "out"

    exit_code = main(
        [
            "plan",
            "--experiment",
            str(experiment),
            "--programs",
            programs,
            "--out",
            str(out_dir),
            "--run-id",
            "dry",
            "--dry-run",
            "--format",
            "jsonl",
        ]
    )
    assert exit_code == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 36
    records = [JobInstance.from_json(json.loads(line)) for line in lines]
    assert records[0].depends == ()
    assert records[-1].depends == (11,)
    assert not (out_dir / "runs" / "dry").exists()


def test_threads_default_comes_from_environment(
    tmp_path: Path, capsys, monkeypatch
) -> None:
    experiment, programs = _setup_specs(tmp_path)
    monkeypatch.setenv("WALUIGI_THREADS", "3")
    exit_code = main(
        [
            "plan",
            "--experiment",
            str(experiment),
            "--programs",
            programs,
            "--out",
            str(tmp_path / "out"),
            "--dry-run",
            "--format",
            "jsonl",
        ]
    )
    assert exit_code == 0
    records = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert {record["threads"] for record in records} == {3}


def test_validate_and_show_jobs(tmp_path: Path, capsys) -> None:
    experiment, programs = _setup_specs(tmp_path)

    assert (
        main(
            [
                "validate",
                "--experiment",
                str(experiment),
                "--programs",
                programs,
                "--format",
                "json",
            ]
        )
        == 0
    )
    payload = json.loads(capsys.readouterr().out)
    assert payload["valid"] is True
    assert payload["programs"] == ["gen", "solve"]
    assert payload["num_jobs"] == 2
    assert payload["num_instances"] == 36

    summary = plan_experiment(
        experiment_path=experiment,
        program_patterns=[programs],
        out_dir=tmp_path / "out",
        threads=2,
        run_id="shown",
    )
    run_dir = str(summary.run_root)
    assert main(["show-jobs", "--run-dir", run_dir, "--format", "jsonl"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert [json.loads(line)["id"] for line in lines] == list(range(36))

    assert main(["show-jobs", "--run-dir", run_dir]) == 0
    assert "Jobs (shown)" in capsys.readouterr().out


def test_unknown_dependency_exits_with_plan_error(tmp_path: Path, capsys) -> None:
    _, programs = _setup_specs(tmp_path)
    experiment = tmp_path / "broken.yaml"
    _write(
        experiment,
        """
jobs:
  - run: solve
    on_each: [gen]
    parameters:
      alpha: 0.1
""",
    )
    exit_code = main(
        [
            "plan",
            "--experiment",
            str(experiment),
            "--programs",
            programs,
            "--out",
            str(tmp_path / "out"),
        ]
    )
    assert exit_code == 2
    err = capsys.readouterr().err
    assert "[plan error]" in err
    assert "no previous job provides gen" in err


def test_existing_run_directory_is_a_config_error(tmp_path: Path, capsys) -> None:
    experiment, programs = _setup_specs(tmp_path)
    kwargs = dict(
        experiment_path=experiment,
        program_patterns=[programs],
        out_dir=tmp_path / "out",
        threads=1,
        run_id="again",
    )
    plan_experiment(**kwargs)
    with pytest.raises(ConfigError, match="Run directory already exists"):
        plan_experiment(**kwargs)

    exit_code = main(
        [
            "plan",
            "--experiment",
            str(experiment),
            "--programs",
            programs,
            "--out",
            str(tmp_path / "out"),
            "--run-id",
            "again",
        ]
    )
    assert exit_code == 2
    assert "[config error]" in capsys.readouterr().err


def test_plan_rejects_non_positive_threads(tmp_path: Path) -> None:
    experiment, programs = _setup_specs(tmp_path)
    with pytest.raises(ConfigError, match="threads must be positive"):
        plan_experiment(
            experiment_path=experiment,
            program_patterns=[programs],
            out_dir=tmp_path / "out",
            threads=0,
            dry_run=True,
        )


def test_missing_plan_artifacts_point_at_plan(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Has 'plan' been run"):
        PlanStore(tmp_path / "nowhere").read_jobs()


def test_log_file_records_planning_summary(tmp_path: Path, capsys) -> None:
    experiment, programs = _setup_specs(tmp_path)
    log_file = tmp_path / "logs" / "plan.log"
    exit_code = main(
        [
            "--log-file",
            str(log_file),
            "validate",
            "--experiment",
            str(experiment),
            "--programs",
            programs,
        ]
    )
    capsys.readouterr()
    assert exit_code == 0
    text = log_file.read_text(encoding="utf-8")
    assert "cli_command_start command=validate" in text
    assert "cli_command_end command=validate exit_code=0" in text
    main(["validate", "--experiment", str(experiment), "--programs", programs])
    capsys.readouterr()
