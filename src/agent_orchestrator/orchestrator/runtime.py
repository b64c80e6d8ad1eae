"""Wires settings into one set of orchestrator components."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from agent_orchestrator.agents.builder import build_default_registry
from agent_orchestrator.agents.context import AgentContext
from agent_orchestrator.config import Settings
from agent_orchestrator.orchestrator.dispatcher import TaskDispatcher
from agent_orchestrator.orchestrator.events import EventNotifier
from agent_orchestrator.orchestrator.fallback import FallbackOrchestrator
from agent_orchestrator.orchestrator.lifecycle import TaskLifecycleManager
from agent_orchestrator.orchestrator.memory import MemoryRepository
from agent_orchestrator.orchestrator.metrics import LiveMetricsObserver
from agent_orchestrator.orchestrator.parallel import (
    BoundedWorkerPool,
    ParallelStepCoordinator,
    SaturationPolicy,
)
from agent_orchestrator.orchestrator.registry import CapabilityRegistry
from agent_orchestrator.orchestrator.repository import TaskRepository
from agent_orchestrator.orchestrator.retry import RetryPolicy
from agent_orchestrator.orchestrator.sweeper import Sweeper
from agent_orchestrator.providers.completion import build_completion_service
from agent_orchestrator.providers.metadata import CrossrefProvider, SemanticScholarProvider

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OrchestratorRuntime:
    """Every component built once from settings and shared by reference."""

    settings: Settings
    repository: TaskRepository
    memory: MemoryRepository
    notifier: EventNotifier
    registry: CapabilityRegistry
    lifecycle: TaskLifecycleManager
    dispatcher: TaskDispatcher
    sweeper: Sweeper
    live_metrics: LiveMetricsObserver


@contextmanager
def open_runtime(settings: Settings) -> Iterator[OrchestratorRuntime]:
    """Build the runtime, migrate the schema, and tear everything down on exit.

    Agent invocations and their sub-operations run on separate pools so a
    fan-out never waits on a worker held by its own parent task.
    """

    settings.validate()
    policy = SaturationPolicy(settings.pool.saturation_policy)
    repository = TaskRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    memory = MemoryRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    notifier = EventNotifier(max_delivery_attempts=settings.notifier_max_delivery_attempts)
    live_metrics = LiveMetricsObserver()
    notifier.subscribe(live_metrics)
    task_pool = BoundedWorkerPool(
        max_workers=settings.pool.max_workers,
        max_backlog=settings.pool.max_backlog,
        policy=policy,
        thread_name_prefix="agent-task",
    )
    step_pool = BoundedWorkerPool(
        max_workers=settings.pool.max_workers,
        max_backlog=settings.pool.max_backlog,
        policy=SaturationPolicy.BLOCK,
        thread_name_prefix="agent-step",
    )
    crossref = CrossrefProvider(
        base_url=settings.providers.crossref_url,
        timeout_seconds=settings.providers.metadata_timeout_seconds,
    )
    semantic_scholar = SemanticScholarProvider(
        base_url=settings.providers.semantic_scholar_url,
        timeout_seconds=settings.providers.metadata_timeout_seconds,
    )
    try:
        context = AgentContext(
            completion=build_completion_service(settings.providers.completion_provider),
            coordinator=ParallelStepCoordinator(
                pool=step_pool,
                batch_size=settings.pool.batch_size,
            ),
            memory=memory,
            retry_policy=RetryPolicy(
                max_attempts=settings.retry.max_attempts,
                base_seconds=settings.retry.base_seconds,
                max_seconds=settings.retry.max_seconds,
            )
            if settings.retry.max_attempts > 1
            else None,
        )
        registry = build_default_registry(
            context,
            crossref=crossref,
            semantic_scholar=semantic_scholar,
        )
        lifecycle = TaskLifecycleManager(
            repository=repository,
            notifier=notifier,
            registry=registry,
        )
        yield OrchestratorRuntime(
            settings=settings,
            repository=repository,
            memory=memory,
            notifier=notifier,
            registry=registry,
            lifecycle=lifecycle,
            dispatcher=TaskDispatcher(
                lifecycle=lifecycle,
                fallback=FallbackOrchestrator(registry=registry),
                pool=task_pool,
            ),
            sweeper=Sweeper(
                lifecycle=lifecycle,
                memory=memory,
                task_timeout=settings.sweeper.task_timeout,
                task_retention=settings.sweeper.task_retention,
                memory_stale_after=settings.sweeper.memory_stale_after,
                timeout_interval_seconds=settings.sweeper.timeout_interval_seconds,
                retention_interval_seconds=settings.sweeper.retention_interval_seconds,
            ),
            live_metrics=live_metrics,
        )
    finally:
        task_pool.shutdown()
        step_pool.shutdown()
        if not notifier.flush(timeout=5.0):
            logger.warning("Event notifier did not drain before shutdown")
        notifier.close()
        crossref.close()
        semantic_scholar.close()
        memory.close()
        repository.close()
