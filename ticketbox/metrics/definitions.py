"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

TRANSITIONS_TOTAL = "ticket_transitions_total"
TRANSITION_DURATION = "ticket_transition_duration_seconds"
OVERWRITE_FAILURES_TOTAL = "ticket_overwrite_failures_total"
PARTICIPANT_CHANGES_TOTAL = "ticket_participant_changes_total"
TRANSCRIPTS_TOTAL = "ticket_transcripts_total"
TICKETS_OPENED_TOTAL = "tickets_opened_total"


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TRANSITIONS_TOTAL,
        metric_type="counter",
        description="Lifecycle transitions requested, by action and outcome.",
        label_names=("action", "outcome"),
    ),
    MetricDefinition(
        name=TRANSITION_DURATION,
        metric_type="distribution",
        description="Wall time of successful lifecycle transitions in seconds.",
        label_names=("action",),
    ),
    MetricDefinition(
        name=OVERWRITE_FAILURES_TOTAL,
        metric_type="counter",
        description="Channel permission changes the chat platform rejected.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=PARTICIPANT_CHANGES_TOTAL,
        metric_type="counter",
        description="Participant add/remove requests, by outcome.",
        label_names=("operation", "outcome"),
    ),
    MetricDefinition(
        name=TRANSCRIPTS_TOTAL,
        metric_type="counter",
        description="Archive transcripts generated, skipped or failed.",
        label_names=("outcome",),
    ),
    MetricDefinition(
        name=TICKETS_OPENED_TOTAL,
        metric_type="counter",
        description="Tickets opened.",
    ),
)
