"""Batch resolution of request groups with bounded concurrency."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Literal

from npcforge.data.budget import BudgetTier, normalize_budget
from npcforge.data.matching import ItemReference, MatchingEngine, ResolutionGroup, ResolutionOutcome

from .item_requests import apply_reference_overrides, normalize_armor_items

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4

MatchStatus = Literal["resolved", "duplicate", "missing"]


@dataclass
class MatchDetail:
    """Provenance of one requested reference."""

    group: str
    requested: str
    lookup: str
    status: MatchStatus
    strategy: str | None = None
    matched_name: str | None = None
    matched_type: str | None = None
    matched_pack: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "group": self.group,
            "requested": self.requested,
            "lookup": self.lookup,
            "status": self.status,
            "strategy": self.strategy,
            "matched_name": self.matched_name,
            "matched_type": self.matched_type,
            "matched_pack": self.matched_pack,
        }


@dataclass
class ResolutionReport:
    items: list[dict[str, Any]] = field(default_factory=list)
    resolved_count: int = 0
    missing_count: int = 0
    match_details: list[MatchDetail] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": self.items,
            "resolved_count": self.resolved_count,
            "missing_count": self.missing_count,
            "match_details": [detail.to_dict() for detail in self.match_details],
        }


@dataclass(frozen=True)
class _Task:
    group: ResolutionGroup
    reference: ItemReference


class ResolutionPipeline:
    """Resolves every reference of every group and de-duplicates the results.

    Lookups run on a fixed-size worker pool pulling from a shared cursor.
    Results are written by input position, so the output order matches the
    request order no matter which lookup finishes first.
    """

    def __init__(self, engine: MatchingEngine, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self._engine = engine
        self._concurrency = max(1, concurrency)

    @property
    def engine(self) -> MatchingEngine:
        return self._engine

    async def resolve_request_groups(
        self,
        groups: list[ResolutionGroup],
        budget: BudgetTier | str = BudgetTier.NORMAL,
        concurrency: int | None = None,
        *,
        collect_details: bool = True,
    ) -> ResolutionReport:
        tier = normalize_budget(budget)
        tasks = [_Task(group, ref) for group in groups for ref in group.references if ref.name.strip()]
        for group in groups:
            if group.references and not group.packs:
                logger.warning("[Resolution] Group has no collections: group=%s refs=%d", group.key, len(group.references))

        outcomes = await self._run_tasks(tasks, tier, max(1, concurrency or self._concurrency))

        report = ResolutionReport()
        seen: set[str] = set()
        for task, outcome in zip(tasks, outcomes):
            detail = MatchDetail(
                group=task.group.key,
                requested=task.reference.name,
                lookup=task.reference.lookup,
                status="missing",
                strategy=str(outcome.strategy) if outcome.strategy else None,
            )
            result = outcome.result
            if result is None:
                report.missing_count += 1
            else:
                detail.matched_name = result.meta.matched_name
                detail.matched_type = result.meta.matched_type
                detail.matched_pack = result.meta.matched_pack
                dedupe_key = str(result.item.get("name") or "").strip().lower()
                if not dedupe_key or dedupe_key in seen:
                    detail.status = "duplicate"
                else:
                    seen.add(dedupe_key)
                    detail.status = "resolved"
                    report.items.append(apply_reference_overrides(result.item, task.reference))
                    report.resolved_count += 1
            if collect_details:
                report.match_details.append(detail)

        report.items = normalize_armor_items(report.items)

        logger.info(
            "[Resolution] Resolved request groups: groups=%d refs=%d resolved=%d missing=%d budget=%s",
            len(groups),
            len(tasks),
            report.resolved_count,
            report.missing_count,
            tier,
        )
        return report

    async def _run_tasks(self, tasks: list[_Task], tier: BudgetTier, concurrency: int) -> list[ResolutionOutcome]:
        results: list[ResolutionOutcome] = [ResolutionOutcome() for _ in tasks]
        cursor = 0

        async def worker() -> None:
            nonlocal cursor
            while cursor < len(tasks):
                i = cursor
                cursor += 1
                task = tasks[i]
                try:
                    results[i] = await self._engine.resolve(task.reference, task.group, tier)
                except Exception:
                    logger.exception(
                        "[Resolution] Lookup failed: group=%s name=%s",
                        task.group.key,
                        task.reference.name,
                    )

        workers = min(concurrency, len(tasks))
        if workers:
            await asyncio.gather(*(worker() for _ in range(workers)))
        return results
