"""Aggregate task metrics for operators and observers."""

from __future__ import annotations

import threading
from collections import Counter, defaultdict
from dataclasses import dataclass

from agent_orchestrator.orchestrator.models import (
    TaskEvent,
    TaskEventType,
    TaskEventView,
    TaskStatus,
    TaskView,
)


@dataclass(slots=True)
class AgentDurationMetric:
    """Processing duration (started_at -> completed_at) for one agent."""

    sample_size: int
    average_seconds: float
    max_seconds: float


@dataclass(slots=True)
class AgentMetricsSnapshot:
    """Aggregated metrics used by the stats command."""

    active_total: int
    active_status_counts: dict[str, int]
    active_by_agent: dict[str, int]
    window_task_count: int
    failures_by_agent: dict[str, int]
    timeouts_by_agent: dict[str, int]
    fallbacks_by_agent: dict[str, int]
    duration_by_agent: dict[str, AgentDurationMetric]

    def average_duration_seconds(self, agent_id: str) -> float | None:
        metric = self.duration_by_agent.get(agent_id)
        return metric.average_seconds if metric is not None else None


def build_agent_metrics(
    *,
    active_tasks: list[TaskView],
    window_tasks: list[TaskView],
    window_events: list[TaskEventView],
) -> AgentMetricsSnapshot:
    """Build one metrics snapshot from task/event views."""

    active_status_counts = Counter[str]()
    active_by_agent = Counter[str]()
    for task in active_tasks:
        active_status_counts[task.status.value] += 1
        active_by_agent[task.agent_id] += 1

    agent_by_task = {task.task_id: task.agent_id for task in window_tasks}
    timeouts_by_agent = Counter[str]()
    for event in window_events:
        if event.event_type != TaskEventType.TIMED_OUT.value:
            continue
        agent_id = agent_by_task.get(event.task_id)
        if agent_id is not None:
            timeouts_by_agent[agent_id] += 1

    failures_by_agent = Counter[str]()
    fallbacks_by_agent = Counter[str]()
    durations: dict[str, list[float]] = defaultdict(list)
    for task in window_tasks:
        if task.status == TaskStatus.FAILED:
            failures_by_agent[task.agent_id] += 1
        if task.status == TaskStatus.COMPLETED and (task.result or {}).get("usedFallback"):
            fallbacks_by_agent[task.agent_id] += 1
        duration = task.duration_seconds
        if task.is_terminal and duration is not None:
            durations[task.agent_id].append(max(0.0, duration))

    return AgentMetricsSnapshot(
        active_total=len(active_tasks),
        active_status_counts=dict(sorted(active_status_counts.items())),
        active_by_agent=dict(sorted(active_by_agent.items())),
        window_task_count=len(window_tasks),
        failures_by_agent=dict(sorted(failures_by_agent.items())),
        timeouts_by_agent=dict(sorted(timeouts_by_agent.items())),
        fallbacks_by_agent=dict(sorted(fallbacks_by_agent.items())),
        duration_by_agent={
            agent_id: AgentDurationMetric(
                sample_size=len(values),
                average_seconds=sum(values) / len(values),
                max_seconds=max(values),
            )
            for agent_id, values in sorted(durations.items())
        },
    )


def render_stats_lines(*, snapshot: AgentMetricsSnapshot, hours: int) -> list[str]:
    """Render operator-facing metrics lines for CLI output."""

    lines = [
        f"Agent task health (window={hours}h)",
        f"Active tasks: {snapshot.active_total}"
        + (f" ({_fmt_key_value(snapshot.active_status_counts)})" if snapshot.active_total else ""),
        "Active by agent: " + (_fmt_key_value(snapshot.active_by_agent) or "none"),
        f"Window tasks: {snapshot.window_task_count}",
        "Failures by agent: " + (_fmt_key_value(snapshot.failures_by_agent) or "none"),
        "Timeouts by agent: " + (_fmt_key_value(snapshot.timeouts_by_agent) or "none"),
        "Fallbacks by agent: " + (_fmt_key_value(snapshot.fallbacks_by_agent) or "none"),
    ]
    if snapshot.duration_by_agent:
        lines.append("Processing duration (started_at -> completed_at):")
        for agent_id, metric in snapshot.duration_by_agent.items():
            lines.append(
                "  "
                f"agent={agent_id} n={metric.sample_size} "
                f"avg={metric.average_seconds:.2f}s max={metric.max_seconds:.2f}s",
            )
    else:
        lines.append("Processing duration: none")
    return lines


class LiveMetricsObserver:
    """Event-stream observer keeping per-agent transition counts in memory.

    Counts are per delivery, so a redelivered event is counted again.
    """

    def __init__(self) -> None:
        self._counts: dict[str, Counter[str]] = defaultdict(Counter)
        self._lock = threading.Lock()

    def __call__(self, event: TaskEvent) -> None:
        with self._lock:
            self._counts[event.agent_id][event.event_type.value] += 1

    def counts_for(self, agent_id: str) -> dict[str, int]:
        with self._lock:
            return dict(self._counts.get(agent_id, Counter()))

    def in_flight(self, agent_id: str) -> int:
        """Started minus finished, as seen on the stream."""

        counts = self.counts_for(agent_id)
        finished = sum(
            counts.get(event_type.value, 0)
            for event_type in (
                TaskEventType.COMPLETED,
                TaskEventType.FAILED,
                TaskEventType.TIMED_OUT,
            )
        )
        return max(0, counts.get(TaskEventType.STARTED.value, 0) - finished)


def _fmt_key_value(values: dict[str, int]) -> str:
    return " ".join(f"{key}={value}" for key, value in values.items())
