from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:
    from waluigi.fields import FieldSetting, FieldType


class WaluigiError(RuntimeError):
    """Base error for planner failures."""


class ConfigError(WaluigiError):
    """Raised when a program or experiment document is malformed."""


class PlanningError(WaluigiError):
    """Raised when a well-formed experiment cannot be planned."""


class Future:
    """Placeholder for a value a dependency job produces at run time."""

    _instance: "Future | None" = None

    def __new__(cls) -> "Future":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "Future"

    def __reduce__(self) -> str:
        return "FUTURE"


FUTURE = Future()

FieldData = str | float | int | bool | Future


def datum_to_json(value: FieldData) -> Any:
    # Future is the only variant without a payload; it travels as null.
    if value is FUTURE:
        return None
    return value


def datum_from_json(value: Any) -> FieldData:
    if value is None:
        return FUTURE
    if isinstance(value, (str, bool, int, float)):
        return value
    raise ConfigError(f"unsupported parameter value {value!r}")


class FieldMismatch(PlanningError):
    def __init__(self, dtype: "FieldType", datum: FieldData):
        self.dtype = dtype
        self.datum = datum
        super().__init__(
            f"field of type {dtype.value} did not match datum {datum!r} used to fill it"
        )


class InvalidProgram(PlanningError):
    def __init__(self, name: str, known: Sequence[str]):
        self.name = name
        self.known = tuple(known)
        super().__init__(
            f"unknown program {name} found in spec. available: {', '.join(self.known)}"
        )


class MissingParameter(PlanningError):
    def __init__(self, field: str, program: str):
        self.field = field
        self.program = program
        super().__init__(f"parameter {field} missing for {program}")


class InvalidParameterSetting(PlanningError):
    def __init__(self, field: str, setting: "FieldSetting", dtype: "FieldType"):
        self.field = field
        self.setting = setting
        self.dtype = dtype
        super().__init__(
            f"invalid parameter setting {setting!r} for field {field} "
            f"of type {dtype.value}"
        )


class InvalidParameterData(PlanningError):
    def __init__(self, field: str, datum: FieldData, dtype: "FieldType"):
        self.field = field
        self.datum = datum
        self.dtype = dtype
        super().__init__(
            f"invalid parameter data {datum!r} for field {field} of type {dtype.value}"
        )


class UnknownDependency(PlanningError):
    def __init__(self, job: str, dependency: str):
        self.job = job
        self.dependency = dependency
        super().__init__(
            f"job {job} has {dependency} listed as a dependency, "
            f"but no previous job provides {dependency}"
        )


@dataclass(frozen=True)
class JobInstance:
    id: int
    command: str
    params: dict[str, FieldData]
    depends: tuple[int, ...]
    threads: int
    log: str = ""

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "params": {key: datum_to_json(value) for key, value in self.params.items()},
            "depends": list(self.depends),
            "threads": self.threads,
            "log": self.log,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "JobInstance":
        return cls(
            id=int(payload["id"]),
            command=str(payload["command"]),
            params={
                str(key): datum_from_json(value)
                for key, value in dict(payload["params"]).items()
            },
            depends=tuple(int(x) for x in payload.get("depends", [])),
            threads=int(payload["threads"]),
            log=str(payload.get("log", "")),
        )


@dataclass(frozen=True)
class PlanSummary:
    run_id: str
    run_root: Path
    total_jobs: int
    jobs_by_program: dict[str, int]
    instances: tuple[JobInstance, ...] = ()
    preview_jobs: tuple[dict[str, Any], ...] = ()
