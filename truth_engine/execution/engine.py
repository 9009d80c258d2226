"""Concurrent execution of a verification plan.

Every planned task is launched at once and reported through an async
stream of lifecycle events in arrival order. A failing task is marked
failed and nothing else is affected. When the global deadline passes,
still-running tasks are cancelled, marked failed, and the stream ends
with ExecutionTimedOut instead of ExecutionFinished.

Usage:
    engine = ExecutionEngine(registry)
    async for event in engine.execute(plan, context):
        ...
"""

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Union

import structlog

from truth_engine.config.settings import settings
from truth_engine.errors import TaskFailure
from truth_engine.routing.capability_router import CapabilityRouter
from truth_engine.schemas.claim import ClaimContext
from truth_engine.schemas.task import PlannedTask, SubResult, TaskResult, TaskStatus
from truth_engine.schemas.verdict import VerdictFragment
from truth_engine.sources.registry import SourceRegistry
from truth_engine.utils.logging import bind_session_context


class LiveConfidence:
    """Running confidence that only ever moves up."""

    def __init__(self, initial: float = 0.0):
        self._value = initial

    @property
    def value(self) -> float:
        return self._value

    def observe(self, confidence: float) -> float:
        if confidence > self._value:
            self._value = min(1.0, confidence)
        return self._value


@dataclass(frozen=True)
class TaskStarted:
    task: PlannedTask
    result: TaskResult


@dataclass(frozen=True)
class SubTaskFinished:
    """A capability provider finished under its parent task."""

    task: PlannedTask
    sub_result: SubResult


@dataclass(frozen=True)
class TaskCompleted:
    task: PlannedTask
    result: TaskResult
    live_confidence: float


@dataclass(frozen=True)
class TaskFailed:
    task: PlannedTask
    result: TaskResult
    live_confidence: float


@dataclass(frozen=True)
class ExecutionFinished:
    results: tuple[TaskResult, ...]
    live_confidence: float


@dataclass(frozen=True)
class ExecutionTimedOut:
    results: tuple[TaskResult, ...]
    live_confidence: float
    timeout_seconds: float


ExecutionEvent = Union[
    TaskStarted,
    SubTaskFinished,
    TaskCompleted,
    TaskFailed,
    ExecutionFinished,
    ExecutionTimedOut,
]


class ExecutionEngine:
    """Runs PlannedTasks concurrently and streams their lifecycle."""

    def __init__(
        self,
        registry: SourceRegistry,
        router: Optional[CapabilityRouter] = None,
        timeout_seconds: Optional[float] = None,
        task_timeout_factor: Optional[float] = None,
    ) -> None:
        """Initialize ExecutionEngine.

        Args:
            registry: Frozen source registry.
            router: Router used for capability fan-out.
            timeout_seconds: Global deadline (defaults to settings).
            task_timeout_factor: Per-task budget multiplier (defaults to settings).
        """
        self.registry = registry
        self.router = router or CapabilityRouter(registry)
        self.timeout_seconds = timeout_seconds or settings.session_timeout_seconds
        self.task_timeout_factor = task_timeout_factor or settings.task_timeout_factor
        self._logger = structlog.get_logger().bind(component="ExecutionEngine")

    async def execute(
        self,
        plan: Any,
        context: ClaimContext,
        timeout_seconds: Optional[float] = None,
        session_id: Optional[str] = None,
    ) -> AsyncIterator[ExecutionEvent]:
        """Execute every task in the plan, yielding events as they happen.

        Each call starts from fresh TaskResults, so the same plan can be
        executed again. Nothing runs until the first event is awaited.
        """
        timeout = timeout_seconds or self.timeout_seconds
        log = bind_session_context(self._logger, session_id) if session_id else self._logger
        tasks: list[PlannedTask] = list(plan)
        by_id = {t.task_id: t for t in tasks}
        results = {t.task_id: TaskResult.pending(t) for t in tasks}
        live = LiveConfidence()
        queue: asyncio.Queue = asyncio.Queue()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        log.info("execution_started", tasks=len(tasks), timeout=timeout)
        runners = [
            asyncio.create_task(
                self._run_task(task, results[task.task_id], context, queue),
                name=f"truth-engine:{task.task_id}",
            )
            for task in tasks
        ]
        outstanding = len(runners)
        timed_out = False

        def to_event(item: Any) -> ExecutionEvent:
            if not isinstance(item, TaskResult):
                return item
            task = by_id[item.task_id]
            if item.status == TaskStatus.COMPLETED:
                live.observe(item.confidence)
                return TaskCompleted(task=task, result=item, live_confidence=live.value)
            return TaskFailed(task=task, result=item, live_confidence=live.value)

        try:
            while outstanding:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    timed_out = True
                    break
                try:
                    item = await asyncio.wait_for(queue.get(), remaining)
                except asyncio.TimeoutError:
                    timed_out = True
                    break
                if isinstance(item, TaskResult):
                    outstanding -= 1
                yield to_event(item)

            if timed_out:
                for runner in runners:
                    runner.cancel()
                await asyncio.gather(*runners, return_exceptions=True)

                # Deliver anything that finished while the deadline hit
                while not queue.empty():
                    yield to_event(queue.get_nowait())

                for task in tasks:
                    result = results[task.task_id]
                    if not result.status.terminal:
                        result.mark_failed("session timeout")
                        yield to_event(result)

                log.warning(
                    "execution_timed_out",
                    completed=sum(1 for r in results.values() if r.status == TaskStatus.COMPLETED),
                    live_confidence=live.value,
                )
                yield ExecutionTimedOut(
                    results=tuple(results[t.task_id] for t in tasks),
                    live_confidence=live.value,
                    timeout_seconds=timeout,
                )
            else:
                log.info(
                    "execution_finished",
                    completed=sum(1 for r in results.values() if r.status == TaskStatus.COMPLETED),
                    failed=sum(1 for r in results.values() if r.status == TaskStatus.FAILED),
                    live_confidence=live.value,
                )
                yield ExecutionFinished(
                    results=tuple(results[t.task_id] for t in tasks),
                    live_confidence=live.value,
                )
        finally:
            for runner in runners:
                if not runner.done():
                    runner.cancel()

    async def _run_task(
        self,
        task: PlannedTask,
        result: TaskResult,
        context: ClaimContext,
        queue: asyncio.Queue,
    ) -> None:
        result.mark_running()
        await queue.put(TaskStarted(task=task, result=result))

        budget = task.expected_duration * self.task_timeout_factor
        try:
            confidence, fragment, evidence = await asyncio.wait_for(
                self._invoke(task, result, context, queue), budget
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            failure = TaskFailure(task.name, f"exceeded {budget:.2f}s budget", timed_out=True)
            result.mark_failed(str(failure))
            self._logger.warning("task_failed", **failure.to_trace_dict())
        except Exception as e:
            failure = e if isinstance(e, TaskFailure) else TaskFailure(task.name, str(e))
            result.mark_failed(str(failure))
            self._logger.warning("task_failed", task_name=task.name, error=str(e))
        else:
            result.mark_completed(confidence, fragment, evidence)
            self._logger.debug("task_completed", task_name=task.name, confidence=confidence)

        await queue.put(result)

    async def _invoke(
        self,
        task: PlannedTask,
        result: TaskResult,
        context: ClaimContext,
        queue: asyncio.Queue,
    ) -> tuple[float, Optional[VerdictFragment], dict[str, Any]]:
        if not task.is_capability:
            outcome = await self.registry.invoke(task.name, context, task.parameters)
            return outcome.confidence, outcome.fragment, outcome.evidence

        async def on_sub_result(sub: SubResult) -> None:
            result.sub_results.append(sub)
            await queue.put(SubTaskFinished(task=task, sub_result=sub))

        subs = await self.router.execute(
            task.capability,
            context,
            task.parameters,
            providers=list(task.providers),
            on_sub_result=on_sub_result,
        )
        completed = [s for s in subs if s.status == TaskStatus.COMPLETED]
        if not completed:
            raise TaskFailure(
                task.name,
                "all capability providers failed",
                details={s.provider: s.error for s in subs},
            )

        fragment = VerdictFragment()
        for sub in completed:
            if sub.fragment is not None:
                fragment = fragment.merged(sub.fragment)
        evidence = {s.provider: s.evidence for s in completed}
        return max(s.confidence for s in completed), fragment, evidence
