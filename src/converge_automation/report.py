from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .types import ActionResult, TaskStatus

logger = logging.getLogger(__name__)


@dataclass
class HostStats:
    ok: int = 0
    changed: int = 0
    failed: int = 0
    skipped: int = 0

    def add(self, result: ActionResult) -> None:
        status = result.status
        if status is TaskStatus.FAILED:
            self.failed += 1
        elif status is TaskStatus.SKIPPED:
            self.skipped += 1
        elif status is TaskStatus.CHANGED:
            self.changed += 1
        else:
            self.ok += 1


@dataclass
class RunReport:
    """Per-host, per-task outcomes of one playbook run."""

    results: list[ActionResult] = field(default_factory=list)
    plays: list[tuple[str, list[ActionResult]]] = field(default_factory=list)
    dry_run: bool = False
    cancelled: bool = False

    def add(self, play: str, results: list[ActionResult]) -> None:
        self.results.extend(results)
        self.plays.append((play, list(results)))

    @property
    def stats(self) -> dict[str, HostStats]:
        stats: dict[str, HostStats] = {}
        for result in self.results:
            stats.setdefault(result.host, HostStats()).add(result)
        return stats

    @property
    def failures(self) -> list[ActionResult]:
        return [result for result in self.results if result.failed]

    @property
    def failed_hosts(self) -> list[str]:
        hosts: list[str] = []
        for result in self.failures:
            if result.host not in hosts:
                hosts.append(result.host)
        return hosts

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "stats": {host: dataclasses.asdict(stats) for host, stats in self.stats.items()},
            "plays": [
                {
                    "name": name,
                    "results": [
                        {**dataclasses.asdict(result), "status": result.status.value} for result in results
                    ],
                }
                for name, results in self.plays
            ],
            "failures": [
                {"host": r.host, "task": r.task, "action": r.action, "reason": r.details}
                for r in self.failures
            ],
        }

    def write_json(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))
        logger.debug("report written to %s", path)
