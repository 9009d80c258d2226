"""Verification planning: which sources run and in what order.

Ordering is by ascending trust tier, then ascending expected duration,
then name, so the plan for a given context and registry is always the
same. The plan is final before execution starts.
"""

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import structlog

from truth_engine.routing.capability_router import CapabilityRouter
from truth_engine.schemas.claim import ClaimContext
from truth_engine.schemas.source import CapabilityKind, SourceKind, TrustTier
from truth_engine.schemas.task import PlannedTask
from truth_engine.sources.registry import SourceRegistry


@dataclass(frozen=True)
class VerificationPlan:
    """Ordered, immutable set of tasks for one session."""

    tasks: tuple[PlannedTask, ...]
    capability_kinds: frozenset[CapabilityKind] = field(default_factory=frozenset)

    def __iter__(self) -> Iterator[PlannedTask]:
        return iter(self.tasks)

    def __len__(self) -> int:
        return len(self.tasks)

    @property
    def estimated_duration(self) -> float:
        # Tasks run concurrently
        return max((t.expected_duration for t in self.tasks), default=0.0)

    @property
    def traditional_tasks(self) -> list[PlannedTask]:
        return [t for t in self.tasks if not t.is_capability]

    @property
    def capability_tasks(self) -> list[PlannedTask]:
        return [t for t in self.tasks if t.is_capability]

    def to_message(self) -> dict[str, Any]:
        """Payload for the client-facing plan announcement."""
        return {
            "sources": [
                {
                    "taskId": t.task_id,
                    "name": t.name,
                    "tier": int(t.tier),
                    "priority": t.priority,
                    "expectedTime": t.expected_duration,
                }
                for t in self.traditional_tasks
            ],
            "capabilityTasks": [
                {
                    "taskId": t.task_id,
                    "capability": t.capability.value if t.capability else None,
                    "providers": list(t.providers),
                    "tier": int(t.tier),
                    "priority": t.priority,
                    "expectedTime": t.expected_duration,
                }
                for t in self.capability_tasks
            ],
            "estimatedDuration": self.estimated_duration,
        }


class Planner:
    """Builds a deterministic VerificationPlan from a ClaimContext."""

    def __init__(self, registry: SourceRegistry, router: Optional[CapabilityRouter] = None):
        self.registry = registry
        self.router = router or CapabilityRouter(registry)
        self._logger = structlog.get_logger().bind(component="Planner")

    def plan(self, context: ClaimContext) -> VerificationPlan:
        drafts: list[dict[str, Any]] = []

        for source in self.registry.list_sources(SourceKind.TRADITIONAL):
            if not source.applies_to(context):
                continue
            drafts.append({
                "name": source.name,
                "kind": SourceKind.TRADITIONAL,
                "tier": source.tier,
                "expected_duration": source.expected_duration,
                "parameters": {
                    "claim_types": [t.value for t in context.claim_types],
                    "strategy": context.strategy,
                },
            })

        kinds = self.router.route(context.text, context)
        for kind in sorted(kinds, key=lambda k: k.value):
            providers = self.router.providers_for(kind)
            drafts.append({
                "name": f"capability:{kind.value}",
                "kind": SourceKind.CAPABILITY_PROVIDER,
                "tier": TrustTier(min(int(p.descriptor.tier) for p in providers)),
                "expected_duration": max(p.descriptor.expected_duration for p in providers),
                "capability": kind,
                "providers": tuple(p.name for p in providers),
                "parameters": {
                    "capability": kind.value,
                    "urls": context.entities_of("url"),
                    "emails": context.entities_of("email"),
                },
            })

        drafts.sort(key=lambda d: (int(d["tier"]), d["expected_duration"], d["name"]))
        total = len(drafts)
        tasks = tuple(
            PlannedTask(task_id=f"task-{i + 1}", priority=total - i, **draft)
            for i, draft in enumerate(drafts)
        )

        self._logger.info(
            "plan_created",
            tasks=len(tasks),
            capability_kinds=sorted(k.value for k in kinds),
            strategy=context.strategy,
        )
        return VerificationPlan(tasks=tasks, capability_kinds=kinds)
