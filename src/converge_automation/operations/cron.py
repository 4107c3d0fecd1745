from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from .base import Operation
from ..errors import ReconcileError
from ..executors import Executor
from ..types import ActionResult, HostConfig

FIELDS = ("minute", "hour", "day", "month", "weekday")


class CronOperation(Operation):
    """Manage one named cron entry as a file under ``cron_dir``."""

    action = "cron"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("cron operation requires a name")
        self.name = str(raw_name)
        self.user = str(spec.get("user", "root"))
        self.state = self.parse_state(spec.get("state"), {"present", "absent"}, "present", "cron")
        self.command = spec.get("command") or spec.get("job")
        if not self.command and self.state == "present":
            raise ValueError("cron operation requires a command")
        self.schedule = self._parse_schedule(spec)
        self.env = spec.get("env", {})
        if not isinstance(self.env, dict):
            raise ValueError("cron env must be a mapping")
        cron_dir = Path(str(spec.get("cron_dir", "/etc/cron.d")))
        self.cron_file = cron_dir / self.file_name(self.name)

    @staticmethod
    def file_name(name: str) -> str:
        # run-parts ignores cron.d entries whose names contain dots
        slug = re.sub(r"[^A-Za-z0-9_-]+", "-", name.strip()).strip("-").lower()
        if not slug:
            raise ValueError(f"cron name '{name}' has no usable characters")
        return slug

    @staticmethod
    def _parse_schedule(spec: dict[str, Any]) -> str:
        raw = spec.get("schedule")
        if raw is not None:
            fields = str(raw).split()
            if len(fields) != 5:
                raise ValueError(f"cron schedule must have five fields, got '{raw}'")
            return " ".join(fields)
        values = {
            "minute": spec.get("minute", "*"),
            "hour": spec.get("hour", "*"),
            "day": spec.get("day", spec.get("day_of_month", "*")),
            "month": spec.get("month", "*"),
            "weekday": spec.get("weekday", spec.get("day_of_week", "*")),
        }
        return " ".join(str(values[key]).strip() for key in FIELDS)

    def header(self) -> str:
        return f"# converge: {self.name}"

    def render(self) -> str:
        lines = [self.header()]
        for key in sorted(self.env):
            lines.append(f"{key}={self.env[key]}")
        lines.append(f"{self.schedule} {self.user} {self.command}")
        return "\n".join(lines) + "\n"

    def _owns(self, content: str) -> bool:
        return content.split("\n", 1)[0] == self.header()

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        existing = executor.read_file(self.cron_file)
        if self.state == "absent":
            # leave files written for another entry or by hand alone
            if existing is None or not self._owns(existing):
                return self.result(host, [])
            removed = executor.remove_path(self.cron_file)
            return self.result(host, ["removed"] if removed else [])

        if existing is not None and not self._owns(existing):
            raise ReconcileError(
                f"{self.cron_file} belongs to another cron entry; choose a different name for '{self.name}'",
                kind="cron-name-conflict",
            )
        content = self.render()
        if existing == content:
            return self.result(host, [])

        changed, _ = executor.write_file(self.cron_file, content=content, mode=0o644)
        detail = "updated" if existing is not None else "created"
        return self.result(host, [detail] if changed else [])
