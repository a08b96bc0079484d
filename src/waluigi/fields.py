"""Typed field model: value kinds, value settings and option rendering."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from waluigi.models import (
    FUTURE,
    ConfigError,
    FieldData,
    FieldMismatch,
    datum_to_json,
)

_PLACEHOLDER_RE = re.compile(r"<.+?>")
_BATCH_MODES = {"max", "join", "none"}


class FieldType(str, Enum):
    STR = "str"
    PATH = "path"
    UINT = "uint"
    FLOAT = "float"
    BOOL = "bool"

    def matches(self, datum: FieldData) -> bool:
        if datum is FUTURE:
            return self is FieldType.STR
        # bool is an int subclass, so it has to be ruled out first.
        if isinstance(datum, bool):
            return self is FieldType.BOOL
        if isinstance(datum, str):
            return self in (FieldType.STR, FieldType.PATH)
        if isinstance(datum, int):
            return self is FieldType.UINT and datum >= 0
        if isinstance(datum, float):
            return self is FieldType.FLOAT or (
                self is FieldType.UINT and datum.is_integer() and datum >= 0
            )
        return False

    def matches_setting(self, setting: "FieldSetting") -> bool:
        if isinstance(setting, RangeSetting):
            return (
                self in (FieldType.UINT, FieldType.FLOAT)
                and self.matches(setting.start)
                and self.matches(setting.stop)
                and self.matches(setting.step)
            )
        if isinstance(setting, ListSetting):
            return all(self.matches(value) for value in setting.values)
        if isinstance(setting, ValueSetting):
            return self.matches(setting.value)
        return False


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return format(Decimal(repr(value)).normalize(), "f")


def render_datum(datum: FieldData) -> str:
    """Plain string form of a datum as it appears on a command line."""
    if datum is FUTURE:
        return ""
    if isinstance(datum, bool):
        return "true" if datum else "false"
    if isinstance(datum, float):
        return _format_float(datum)
    return str(datum)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class RangeSetting:
    """Inclusive arithmetic progression ``start, start + step, ... <= stop``."""

    start: FieldData
    stop: FieldData
    step: FieldData

    def vectorize(self) -> list[FieldData]:
        bounds = (self.start, self.stop, self.step)
        if not all(_is_number(value) for value in bounds):
            raise ConfigError(f"range bounds must be numeric: {self!r}")
        if not all(math.isfinite(value) for value in bounds):
            raise ConfigError(f"range bounds must be finite: {self!r}")
        if self.step <= 0:
            raise ConfigError(f"range step must be positive: {self!r}")

        out: list[FieldData] = []
        if all(isinstance(value, int) for value in bounds):
            cur: int | float = self.start
        else:
            cur = float(self.start)
        while cur <= self.stop:
            out.append(cur)
            cur += self.step
        return out

    def to_json(self) -> dict[str, Any]:
        return {"from": self.start, "to": self.stop, "step": self.step}


@dataclass(frozen=True)
class ListSetting:
    values: tuple[FieldData, ...]

    def vectorize(self) -> list[FieldData]:
        return list(self.values)

    def to_json(self) -> list[Any]:
        return [datum_to_json(value) for value in self.values]


@dataclass(frozen=True)
class ValueSetting:
    value: FieldData

    def vectorize(self) -> list[FieldData]:
        return [self.value]

    def to_json(self) -> Any:
        return datum_to_json(self.value)


FieldSetting = RangeSetting | ListSetting | ValueSetting


@dataclass(frozen=True)
class BatchPolicy:
    """How a field would be combined across a batch. Not consumed by planning."""

    mode: str = "none"
    separator: str | None = None

    def __post_init__(self) -> None:
        if self.mode not in _BATCH_MODES:
            raise ConfigError(f"batch mode must be one of {sorted(_BATCH_MODES)}")
        if (self.mode == "join") != (self.separator is not None):
            raise ConfigError("batch separator is required for, and only for, join")

    def to_json(self) -> Any:
        if self.mode == "join":
            return {"join": self.separator}
        return self.mode


@dataclass(frozen=True)
class Field:
    dtype: FieldType
    aka: tuple[str, ...] = ()
    option: str | None = None
    batch: BatchPolicy = field(default_factory=BatchPolicy)

    @property
    def required(self) -> bool:
        return self.option is None

    def matches(self, datum: FieldData) -> bool:
        return self.dtype.matches(datum)

    def fill_with(self, datum: FieldData) -> str:
        """Render *datum* as this field's command line fragment.

        Without an option template the plain value is returned. With one,
        ``False`` drops the flag, ``True`` yields the template verbatim and
        any other value replaces the template's first ``<...>`` placeholder.
        """
        if not self.matches(datum):
            raise FieldMismatch(self.dtype, datum)
        if self.option is None:
            return render_datum(datum)
        if datum is False:
            return ""
        if datum is True:
            return self.option
        rendered = render_datum(datum)
        return _PLACEHOLDER_RE.sub(lambda _: rendered, self.option, count=1)
