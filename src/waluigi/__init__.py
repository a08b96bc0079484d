"""Waluigi experiment planner package."""

from waluigi.experiment import Experiment, Job
from waluigi.models import FUTURE, JobInstance, PlanSummary
from waluigi.planner import plan_experiment
from waluigi.programs import Program

__all__ = [
    "FUTURE",
    "Experiment",
    "Job",
    "JobInstance",
    "PlanSummary",
    "Program",
    "plan_experiment",
]
