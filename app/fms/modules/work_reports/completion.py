"""
How complete a work report is, as a weighted share of filled-in fields.

Operates on the serialized report dict so it can score unsaved form data too.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CompletionStep:
    key: str
    label: str
    weight: int
    fields: tuple[str, ...]
    required: bool = False


COMPLETION_STEPS: tuple[CompletionStep, ...] = (
    CompletionStep("basic", "Basic record", 40, ("work_date", "work_type", "notes"), required=True),
    CompletionStep(
        "details",
        "Details",
        30,
        ("weather", "temperature", "humidity", "duration_hours", "worker_count"),
    ),
    CompletionStep("accounting", "Accounting", 20, ("expected_price", "harvest_amount", "harvest_unit")),
    CompletionStep("analysis", "Analysis", 10, ("harvest_quality", "photos")),
)


def _filled(value) -> bool:
    if value is None or value == "":
        return False
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def _filled_fields(report: dict, step: CompletionStep) -> int:
    return sum(1 for f in step.fields if _filled(report.get(f)))


def completion_rate(report: dict) -> int:
    """0..100. A required step with nothing filled contributes nothing."""
    total = sum(step.weight for step in COMPLETION_STEPS)
    done = 0.0
    for step in COMPLETION_STEPS:
        filled = _filled_fields(report, step)
        if step.required and filled == 0:
            continue
        done += step.weight * filled / len(step.fields)
    return int(done / total * 100 + 0.5)


def completion_level(rate: int) -> str:
    if rate < 40:
        return "incomplete"
    if rate < 60:
        return "basic"
    if rate < 90:
        return "detailed"
    return "complete"


def missing_steps(report: dict) -> list[CompletionStep]:
    return [step for step in COMPLETION_STEPS if _filled_fields(report, step) < len(step.fields)]


def next_suggested_action(report: dict) -> str:
    missing = missing_steps(report)
    if not missing:
        return "Record is complete."
    return f"Add {missing[0].label.lower()} to enrich this record."
