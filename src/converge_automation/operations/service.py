from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from typing import Any

from .base import Operation
from ..errors import ReconcileError
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)

STATE_ALIASES = {"running": "started"}


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", service], check=False, mutable=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", service], check=False, mutable=False)
        return result.returncode == 0

    def enable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "enable", service])

    def disable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "disable", service])

    def start(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "start", service])

    def stop(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "stop", service])

    def restart(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "restart", service])

    def reload(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "reload", service])


class ServiceOperation(Operation):
    """Manage systemd services along the running and boot-enabled axes."""

    action = "service"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("service operation requires a name")
        self.name = str(raw_name)
        self.enabled = self.to_bool(spec.get("enabled"))
        raw_state = spec.get("state")
        if raw_state is not None:
            raw_state = STATE_ALIASES.get(str(raw_state), str(raw_state))
            if raw_state not in {"started", "stopped", "restarted", "reloaded"}:
                raise ValueError("service state must be 'started', 'stopped', 'restarted' or 'reloaded'")
        self.state = raw_state
        self.systemctl = SystemCtl()

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if not self.systemctl.available():
            raise ReconcileError("systemctl is not available on this host", kind="service-manager-missing")

        changes: list[str] = []

        if self.enabled is not None:
            enabled = self.systemctl.is_enabled(executor, self.name)
            if self.enabled and not enabled:
                logger.debug("Enabling service %s", self.name)
                if not executor.dry_run:
                    self.systemctl.enable(executor, self.name)
                changes.append("enabled")
            elif not self.enabled and enabled:
                logger.debug("Disabling service %s", self.name)
                if not executor.dry_run:
                    self.systemctl.disable(executor, self.name)
                changes.append("disabled")

        if self.state in {"started", "stopped"}:
            active = self.systemctl.is_active(executor, self.name)
            if self.state == "started" and not active:
                logger.debug("Starting service %s", self.name)
                if not executor.dry_run:
                    self.systemctl.start(executor, self.name)
                changes.append("started")
            elif self.state == "stopped" and active:
                logger.debug("Stopping service %s", self.name)
                if not executor.dry_run:
                    self.systemctl.stop(executor, self.name)
                changes.append("stopped")
        elif self.state == "restarted":
            logger.debug("Restarting service %s", self.name)
            if not executor.dry_run:
                self.systemctl.restart(executor, self.name)
            changes.append("restarted")
        elif self.state == "reloaded":
            logger.debug("Reloading service %s", self.name)
            if not executor.dry_run:
                self.systemctl.reload(executor, self.name)
            changes.append("reloaded")

        return self.result(host, changes)
