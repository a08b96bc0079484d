"""YAML loading and structural validation of program and experiment files."""

from __future__ import annotations

import glob
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from waluigi.experiment import Experiment, Job
from waluigi.fields import (
    BatchPolicy,
    Field,
    FieldSetting,
    FieldType,
    ListSetting,
    RangeSetting,
    ValueSetting,
)
from waluigi.models import FUTURE, ConfigError, FieldData
from waluigi.programs import Output, Program

_log = logging.getLogger("waluigi.loader")

_PROGRAM_KEYS = {"name", "bin", "format", "outputs", "fields"}
_FIELD_KEYS = {"type", "aka", "option", "batch"}
_OUTPUT_KEYS = {"msg", "aka"}
_EXPERIMENT_KEYS = {"jobs"}
_JOB_KEYS = {"run", "parameters", "repetitions", "on_each"}
_RANGE_KEYS = {"from", "to", "step"}


def _validate_mapping(value: Any, *, label: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigError(f"{label} must be a mapping")
    return value


def _optional_mapping(value: Any, *, label: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    return _validate_mapping(value, label=label)


def _reject_unknown_keys(
    value: Mapping[str, Any], *, allowed: set[str], label: str
) -> None:
    unknown = sorted(set(str(key) for key in value.keys()) - allowed)
    if unknown:
        raise ConfigError(f"{label} has unknown keys: {unknown}")


def _require(value: Mapping[str, Any], key: str, *, label: str) -> Any:
    if key not in value:
        raise ConfigError(f"{label}.{key} is required")
    return value[key]


def _ensure_non_empty_str(value: Any, *, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{label} must be a non-empty string")
    return value.strip()


def _ensure_str(value: Any, *, label: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{label} must be a string")
    return value


def _normalize_str_list(value: Any, *, label: str) -> tuple[str, ...]:
    if value is None:
        return tuple()
    if not isinstance(value, list):
        raise ConfigError(f"{label} must be a list of strings")
    return tuple(
        _ensure_non_empty_str(item, label=f"{label}[{index}]")
        for index, item in enumerate(value)
    )


def parse_datum(value: Any, *, label: str) -> FieldData:
    """Decode a YAML scalar: null is a Future and every number is a float."""
    if value is None:
        return FUTURE
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    raise ConfigError(f"{label} must be a string, number, boolean or null")


def parse_setting(value: Any, *, label: str) -> FieldSetting:
    if isinstance(value, Mapping):
        _reject_unknown_keys(value, allowed=_RANGE_KEYS, label=label)
        start, stop, step = (
            parse_datum(_require(value, key, label=label), label=f"{label}.{key}")
            for key in ("from", "to", "step")
        )
        return RangeSetting(start=start, stop=stop, step=step)
    if isinstance(value, list):
        return ListSetting(
            tuple(
                parse_datum(item, label=f"{label}[{index}]")
                for index, item in enumerate(value)
            )
        )
    return ValueSetting(parse_datum(value, label=label))


def parse_batch_policy(value: Any, *, label: str) -> BatchPolicy:
    if value is None:
        return BatchPolicy()
    if isinstance(value, str):
        if value == "join":
            raise ConfigError(f"{label} join requires a separator: {{join: <sep>}}")
        return BatchPolicy(mode=value)
    batch_map = _validate_mapping(value, label=label)
    _reject_unknown_keys(batch_map, allowed={"join"}, label=label)
    separator = _ensure_str(
        _require(batch_map, "join", label=label), label=f"{label}.join"
    )
    return BatchPolicy(mode="join", separator=separator)


def parse_field(value: Any, *, label: str) -> Field:
    field_map = _validate_mapping(value, label=label)
    _reject_unknown_keys(field_map, allowed=_FIELD_KEYS, label=label)

    raw_type = _require(field_map, "type", label=label)
    try:
        dtype = FieldType(raw_type)
    except ValueError as exc:
        allowed = [item.value for item in FieldType]
        raise ConfigError(f"{label}.type must be one of {allowed}") from exc

    option = field_map.get("option")
    if option is not None:
        option = _ensure_non_empty_str(option, label=f"{label}.option")

    return Field(
        dtype=dtype,
        aka=_normalize_str_list(field_map.get("aka"), label=f"{label}.aka"),
        option=option,
        batch=parse_batch_policy(field_map.get("batch"), label=f"{label}.batch"),
    )


def parse_output(value: Any, *, label: str) -> Output:
    output_map = _validate_mapping(value, label=label)
    _reject_unknown_keys(output_map, allowed=_OUTPUT_KEYS, label=label)
    return Output(
        msg=_ensure_str(_require(output_map, "msg", label=label), label=f"{label}.msg"),
        aka=_normalize_str_list(output_map.get("aka"), label=f"{label}.aka"),
    )


def parse_program(raw: Any, *, source: str = "program") -> Program:
    program_map = _validate_mapping(raw, label=source)
    _reject_unknown_keys(program_map, allowed=_PROGRAM_KEYS, label=source)

    name = _ensure_non_empty_str(
        _require(program_map, "name", label=source), label=f"{source}.name"
    )
    label = f"{source}({name})"

    outputs_map = _optional_mapping(
        _require(program_map, "outputs", label=label), label=f"{label}.outputs"
    )
    fields_map = _optional_mapping(
        _require(program_map, "fields", label=label), label=f"{label}.fields"
    )
    return Program(
        name=name,
        bin=_ensure_non_empty_str(
            _require(program_map, "bin", label=label), label=f"{label}.bin"
        ),
        format=_ensure_str(
            _require(program_map, "format", label=label), label=f"{label}.format"
        ),
        outputs={
            str(key): parse_output(item, label=f"{label}.outputs.{key}")
            for key, item in outputs_map.items()
        },
        fields={
            str(key): parse_field(item, label=f"{label}.fields.{key}")
            for key, item in fields_map.items()
        },
    )


def _parse_repetitions(value: Any, *, label: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"{label} must be a non-negative integer")
    return value


def parse_job(raw: Any, *, label: str) -> Job:
    job_map = _validate_mapping(raw, label=label)
    _reject_unknown_keys(job_map, allowed=_JOB_KEYS, label=label)

    run = _ensure_non_empty_str(
        _require(job_map, "run", label=label), label=f"{label}.run"
    )
    parameters_map = _optional_mapping(
        _require(job_map, "parameters", label=label), label=f"{label}.parameters"
    )

    on_each: tuple[str, ...] | None = None
    if job_map.get("on_each") is not None:
        on_each = _normalize_str_list(job_map["on_each"], label=f"{label}.on_each")

    return Job(
        run=run,
        parameters={
            str(key): parse_setting(item, label=f"{label}.parameters.{key}")
            for key, item in parameters_map.items()
        },
        repetitions=_parse_repetitions(
            job_map.get("repetitions"), label=f"{label}.repetitions"
        ),
        on_each=on_each,
    )


def parse_experiment(raw: Any, *, source: str = "experiment") -> Experiment:
    experiment_map = _validate_mapping(raw, label=source)
    _reject_unknown_keys(experiment_map, allowed=_EXPERIMENT_KEYS, label=source)

    raw_jobs = _require(experiment_map, "jobs", label=source)
    if not isinstance(raw_jobs, list) or not raw_jobs:
        raise ConfigError(f"{source}.jobs must be a non-empty list")
    return Experiment(
        jobs=tuple(
            parse_job(item, label=f"{source}.jobs[{index}]")
            for index, item in enumerate(raw_jobs)
        )
    )


def discover_program_files(patterns: Iterable[str | Path]) -> list[Path]:
    """Expand glob patterns into a sorted, de-duplicated list of files."""
    patterns = [str(pattern) for pattern in patterns]
    found: set[Path] = set()
    for pattern in patterns:
        matches = glob.glob(str(Path(pattern).expanduser()), recursive=True)
        if not matches:
            _log.warning("Program pattern matched no files: %s", pattern)
        found.update(
            Path(match).resolve() for match in matches if Path(match).is_file()
        )
    if not found:
        raise ConfigError(f"No program files matched: {patterns}")
    return sorted(found)


def load_programs(patterns: Iterable[str | Path]) -> dict[str, Program]:
    """Load every program document of every file matched by *patterns*."""
    programs: dict[str, Program] = {}
    sources: dict[str, Path] = {}
    for path in discover_program_files(list(patterns)):
        documents = list(yaml.safe_load_all(path.read_text(encoding="utf-8")))
        for index, raw in enumerate(doc for doc in documents if doc is not None):
            source = str(path) if len(documents) == 1 else f"{path}#{index}"
            program = parse_program(raw, source=source)
            if program.name in programs:
                raise ConfigError(
                    f"Duplicate program '{program.name}' in {path} "
                    f"(first defined in {sources[program.name]})"
                )
            programs[program.name] = program
            sources[program.name] = path
    _log.debug("loaded programs=%s", sorted(programs))
    return programs


def load_experiment(path: str | Path) -> Experiment:
    experiment_path = Path(path)
    raw = yaml.safe_load(experiment_path.read_text(encoding="utf-8"))
    return parse_experiment(raw, source=str(experiment_path))
