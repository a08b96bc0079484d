from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from waluigi.fields import Field, FieldSetting
from waluigi.models import (
    FieldData,
    InvalidParameterData,
    InvalidParameterSetting,
    MissingParameter,
)


@dataclass(frozen=True)
class Output:
    msg: str
    aka: tuple[str, ...] = ()


@dataclass(frozen=True)
class Program:
    name: str
    bin: str
    format: str
    outputs: dict[str, Output] = field(default_factory=dict)
    fields: dict[str, Field] = field(default_factory=dict)

    def cmd(self, params: Mapping[str, FieldData]) -> str:
        """Render the command line for one concrete parameter assignment.

        Positional fields substitute their ``<name>`` placeholder in
        ``format``; option fields are appended in field-name order. Entries
        that are unknown to this program or do not match the field type
        are left out.
        """
        command = f"{self.bin} {self.format}"
        for name in sorted(params):
            spec = self.fields.get(name)
            datum = params[name]
            if spec is None or not spec.matches(datum):
                continue
            filled = spec.fill_with(datum)
            if spec.option is None:
                command = command.replace(f"<{name}>", filled)
            elif filled:
                command = f"{command} {filled}"
        return command

    def validate_parameters(self, settings: Mapping[str, FieldSetting]) -> None:
        for name, spec in self.fields.items():
            if name not in settings:
                if spec.required:
                    raise MissingParameter(name, self.name)
                continue
            setting = settings[name]
            if not spec.dtype.matches_setting(setting):
                raise InvalidParameterSetting(name, setting, spec.dtype)

    def validate_parameter_data(self, data: Mapping[str, FieldData]) -> None:
        for name, spec in self.fields.items():
            if name not in data:
                if spec.required:
                    raise MissingParameter(name, self.name)
                continue
            datum = data[name]
            if not spec.dtype.matches(datum):
                raise InvalidParameterData(name, datum, spec.dtype)
