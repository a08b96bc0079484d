"""Parameter expansion and dependency linking for experiment jobs."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Mapping

from waluigi.fields import FieldSetting
from waluigi.models import (
    FUTURE,
    FieldData,
    InvalidProgram,
    JobInstance,
    UnknownDependency,
)
from waluigi.programs import Program

_log = logging.getLogger("waluigi.experiment")

Assignment = dict[str, FieldData]


def repetition_key(run: str) -> str:
    return f"repetition-{run}"


@dataclass(frozen=True)
class Job:
    run: str
    parameters: dict[str, FieldSetting] = field(default_factory=dict)
    repetitions: int | None = None
    on_each: tuple[str, ...] | None = None

    def has_depends(self) -> bool:
        return self.on_each is not None

    def batch(self) -> list[Assignment]:
        """Expand the parameter settings into concrete assignments.

        The cartesian product over all fields is built one field at a time
        (earlier fields vary slowest), then repeated ``repetitions`` times.
        Every assignment of the i-th repetition carries
        ``repetition-<run> = i``.
        """
        product: list[Assignment] = [{}]
        for name, setting in self.parameters.items():
            values = setting.vectorize()
            product = [
                {**partial, name: value} for partial in product for value in values
            ]

        key = repetition_key(self.run)
        repetitions = 1 if self.repetitions is None else self.repetitions
        return [
            {**assignment, key: repetition}
            for repetition in range(repetitions)
            for assignment in product
        ]


@dataclass(frozen=True)
class Experiment:
    jobs: tuple[Job, ...]

    def plan(
        self, threads: int, programs: Mapping[str, Program]
    ) -> list[JobInstance]:
        """Turn the job declarations into a flat list of job instances.

        Jobs are processed in declaration order. A job with ``on_each`` is
        crossed with every instance of each named, previously planned job;
        it inherits their parameters (later dependencies win on collisions)
        plus a ``Future`` per declared output. The returned list follows
        declaration order, then expansion order within a job.
        """
        return [
            instance
            for _, instances in self.plan_jobs(threads, programs)
            for instance in instances
        ]

    def plan_jobs(
        self, threads: int, programs: Mapping[str, Program]
    ) -> list[tuple[Job, list[JobInstance]]]:
        """Plan every job and keep its instances grouped under it."""
        ids = itertools.count()
        planned: dict[str, list[JobInstance]] = {}
        grouped: list[tuple[Job, list[JobInstance]]] = []

        def instantiate(
            program: Program, params: Assignment, depends: list[int]
        ) -> JobInstance:
            return JobInstance(
                id=next(ids),
                command=program.cmd(params),
                params=params,
                depends=tuple(depends),
                threads=threads,
            )

        for job in self.jobs:
            program = programs.get(job.run)
            if program is None:
                raise InvalidProgram(job.run, sorted(programs))

            if not job.has_depends():
                program.validate_parameters(job.parameters)
                instances = [
                    instantiate(program, params, []) for params in job.batch()
                ]
            else:
                instances = []
                for params, depends in self._link(job, programs, planned):
                    program.validate_parameter_data(params)
                    instances.append(instantiate(program, params, depends))

            _log.debug("planned job=%s instances=%d", job.run, len(instances))
            planned[job.run] = instances
            grouped.append((job, instances))

        _log.info(
            "planned experiment jobs=%d instances=%d",
            len(self.jobs),
            sum(len(instances) for _, instances in grouped),
        )
        return grouped

    @staticmethod
    def _link(
        job: Job,
        programs: Mapping[str, Program],
        planned: Mapping[str, list[JobInstance]],
    ) -> list[tuple[Assignment, list[int]]]:
        working: list[tuple[Assignment, list[int]]] = [
            (params, []) for params in job.batch()
        ]
        for dependency in job.on_each or ():
            upstream = planned.get(dependency)
            if upstream is None:
                raise UnknownDependency(job.run, dependency)
            futures = {name: FUTURE for name in programs[dependency].outputs}
            working = [
                ({**params, **parent.params, **futures}, [*depends, parent.id])
                for params, depends in working
                for parent in upstream
            ]
        return working
