"""Tests for ExecutionEngine.

Tests cover:
- Concurrent execution with events in arrival order
- Failure isolation (one failing task never affects siblings)
- Non-decreasing live confidence
- Global timeout with zero and partial completions
- Per-task budget enforcement
- Capability fan-out with nested sub-results
"""

import asyncio
from typing import Any, Optional

import pytest

from truth_engine.execution.engine import (
    ExecutionEngine,
    ExecutionFinished,
    ExecutionTimedOut,
    LiveConfidence,
    SubTaskFinished,
    TaskCompleted,
    TaskFailed,
    TaskStarted,
)
from truth_engine.planning.planner import Planner
from truth_engine.schemas.claim import ClaimContext, ClaimType
from truth_engine.schemas.source import (
    CapabilityKind,
    SourceKind,
    TrustTier,
    VerificationSource,
)
from truth_engine.schemas.task import TaskStatus
from truth_engine.schemas.verdict import VerdictFragment
from truth_engine.sources.base import ProviderOutcome, VerificationProvider
from truth_engine.sources.registry import SourceRegistry


# ── Helpers ───────────────────────────────────────────────────────────────


class DelayedProvider(VerificationProvider):
    """Sleeps, then returns a fixed outcome or raises."""

    def __init__(
        self,
        name: str,
        delay: float = 0.0,
        confidence: float = 0.5,
        error: Optional[Exception] = None,
        tier: TrustTier = TrustTier.TIER_3,
        expected_duration: float = 1.0,
        capability: Optional[CapabilityKind] = None,
        fragment: Optional[VerdictFragment] = None,
    ):
        super().__init__(VerificationSource(
            name=name,
            tier=tier,
            reliability=0.9,
            expected_duration=expected_duration,
            kind=SourceKind.CAPABILITY_PROVIDER if capability else SourceKind.TRADITIONAL,
            capabilities=frozenset({capability}) if capability else frozenset(),
        ))
        self.delay = delay
        self.confidence = confidence
        self.error = error
        self.fragment = fragment or VerdictFragment()

    async def verify(self, context: ClaimContext, parameters: dict[str, Any]) -> ProviderOutcome:
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ProviderOutcome(confidence=self.confidence, fragment=self.fragment)


def _make_engine(*providers: VerificationProvider, timeout: float = 2.0):
    registry = SourceRegistry()
    for provider in providers:
        registry.register(provider)
    registry.freeze()
    return registry, ExecutionEngine(registry, timeout_seconds=timeout)


def _plan(registry: SourceRegistry, context: Optional[ClaimContext] = None):
    return Planner(registry).plan(context or ClaimContext(text="plain message"))


async def _collect(engine: ExecutionEngine, plan, context=None) -> list:
    return [e async for e in engine.execute(plan, context or ClaimContext(text="plain message"))]


# ── Live Confidence Tests ────────────────────────────────────────────────


class TestLiveConfidence:
    def test_only_moves_up(self) -> None:
        live = LiveConfidence()
        assert [live.observe(v) for v in (0.3, 0.1, 0.8, 0.5)] == [0.3, 0.3, 0.8, 0.8]


# ── Execution Tests ──────────────────────────────────────────────────────


class TestExecution:
    @pytest.mark.asyncio
    async def test_one_of_five_failing_is_isolated(self) -> None:
        registry, engine = _make_engine(
            DelayedProvider("s1", delay=0.01, confidence=0.2),
            DelayedProvider("s2", delay=0.02, confidence=0.4),
            DelayedProvider("s3", delay=0.01, error=RuntimeError("lookup down")),
            DelayedProvider("s4", delay=0.03, confidence=0.6),
            DelayedProvider("s5", delay=0.01, confidence=0.3),
        )
        events = await _collect(engine, _plan(registry))

        final = events[-1]
        assert isinstance(final, ExecutionFinished)
        statuses = {r.source_name: r.status for r in final.results}
        assert statuses["s3"] == TaskStatus.FAILED
        assert sum(1 for s in statuses.values() if s == TaskStatus.COMPLETED) == 4

        failed = [e for e in events if isinstance(e, TaskFailed)]
        assert len(failed) == 1
        assert "lookup down" in failed[0].result.error
        assert final.live_confidence == 0.6

    @pytest.mark.asyncio
    async def test_every_task_starts_before_finishing(self) -> None:
        registry, engine = _make_engine(
            DelayedProvider("a", delay=0.01),
            DelayedProvider("b", delay=0.01),
        )
        events = await _collect(engine, _plan(registry))

        started = [e for e in events if isinstance(e, TaskStarted)]
        assert len(started) == 2
        for event in started:
            finish = next(
                i for i, e in enumerate(events)
                if isinstance(e, (TaskCompleted, TaskFailed)) and e.task.task_id == event.task.task_id
            )
            assert events.index(event) < finish

    @pytest.mark.asyncio
    async def test_live_confidence_non_decreasing(self) -> None:
        registry, engine = _make_engine(
            DelayedProvider("high", delay=0.01, confidence=0.9),
            DelayedProvider("low", delay=0.03, confidence=0.1),
            DelayedProvider("broken", delay=0.05, error=ValueError("x")),
        )
        events = await _collect(engine, _plan(registry))

        seen = [e.live_confidence for e in events if isinstance(e, (TaskCompleted, TaskFailed))]
        assert seen == sorted(seen)
        assert seen[-1] == 0.9

    @pytest.mark.asyncio
    async def test_execute_twice_starts_fresh(self) -> None:
        registry, engine = _make_engine(DelayedProvider("a", confidence=0.4))
        plan = _plan(registry)

        first = (await _collect(engine, plan))[-1]
        second = (await _collect(engine, plan))[-1]

        assert first.results[0] is not second.results[0]
        assert second.results[0].status == TaskStatus.COMPLETED


# ── Timeout Tests ────────────────────────────────────────────────────────


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_global_timeout_with_zero_completions(self) -> None:
        registry, engine = _make_engine(
            DelayedProvider("slow1", delay=10, expected_duration=5.0),
            DelayedProvider("slow2", delay=10, expected_duration=5.0),
            timeout=0.1,
        )
        events = await _collect(engine, _plan(registry))

        final = events[-1]
        assert isinstance(final, ExecutionTimedOut)
        assert final.live_confidence == 0.0
        assert final.timeout_seconds == 0.1
        assert all(r.status == TaskStatus.FAILED for r in final.results)
        assert all(r.error == "session timeout" for r in final.results)

    @pytest.mark.asyncio
    async def test_global_timeout_keeps_finished_results(self) -> None:
        registry, engine = _make_engine(
            DelayedProvider("fast", delay=0.0, confidence=0.7),
            DelayedProvider("hung", delay=10, expected_duration=5.0),
            timeout=0.2,
        )
        events = await _collect(engine, _plan(registry))

        final = events[-1]
        assert isinstance(final, ExecutionTimedOut)
        statuses = {r.source_name: r.status for r in final.results}
        assert statuses == {"fast": TaskStatus.COMPLETED, "hung": TaskStatus.FAILED}
        assert final.live_confidence == 0.7

    @pytest.mark.asyncio
    async def test_per_task_budget_cancels_hung_provider(self) -> None:
        registry, engine = _make_engine(
            DelayedProvider("hung", delay=10, expected_duration=0.02),
            DelayedProvider("ok", delay=0.0, confidence=0.5),
            timeout=5.0,
        )
        events = await _collect(engine, _plan(registry))

        final = events[-1]
        assert isinstance(final, ExecutionFinished)
        hung = next(r for r in final.results if r.source_name == "hung")
        assert hung.status == TaskStatus.FAILED
        assert "exceeded" in hung.error


# ── Capability Tests ─────────────────────────────────────────────────────


class TestCapabilityTasks:
    @pytest.mark.asyncio
    async def test_sub_results_nested_under_parent(self) -> None:
        kind = CapabilityKind.WEB_AUTOMATION
        registry, engine = _make_engine(
            DelayedProvider(
                "inspect_a", confidence=0.4, capability=kind, tier=TrustTier.TIER_4,
                fragment=VerdictFragment(risk_indicators=("shortened_url",)),
            ),
            DelayedProvider(
                "inspect_b", confidence=0.6, capability=kind, tier=TrustTier.TIER_4,
                fragment=VerdictFragment(risk_indicators=("lookalike_domain",)),
            ),
            DelayedProvider("inspect_c", error=RuntimeError("offline"), capability=kind),
        )
        context = ClaimContext(text="x", claim_types=(ClaimType.WEB,))
        events = await _collect(engine, _plan(registry, context), context)

        subs = [e for e in events if isinstance(e, SubTaskFinished)]
        assert {e.sub_result.provider for e in subs} == {"inspect_a", "inspect_b", "inspect_c"}

        completed = next(e for e in events if isinstance(e, TaskCompleted))
        assert completed.task.capability == kind
        assert completed.result.confidence == 0.6
        assert set(completed.result.fragment.risk_indicators) == {
            "shortened_url",
            "lookalike_domain",
        }
        assert len(completed.result.sub_results) == 3

    @pytest.mark.asyncio
    async def test_all_providers_failing_fails_task(self) -> None:
        kind = CapabilityKind.KNOWLEDGE_MANAGEMENT
        registry, engine = _make_engine(
            DelayedProvider("p1", error=RuntimeError("a"), capability=kind),
            DelayedProvider("p2", error=RuntimeError("b"), capability=kind),
        )
        context = ClaimContext(text="x", claim_types=(ClaimType.FINANCIAL,))
        events = await _collect(engine, _plan(registry, context), context)

        failed = next(e for e in events if isinstance(e, TaskFailed))
        assert "all capability providers failed" in failed.result.error
