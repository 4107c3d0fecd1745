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


@dataclass(frozen=True)
class FirewallRule:
    port: str
    proto: str
    action: str = "allow"

    @property
    def target(self) -> str:
        return f"{self.port}/{self.proto}"


@dataclass
class Ufw:
    executable: str = "ufw"

    def available(self) -> bool:
        return shutil.which(self.executable) is not None

    def rules(self, executor: Executor) -> set[FirewallRule]:
        # reports configured rules whether or not the firewall is enabled
        result = executor.run([self.executable, "show", "added"], mutable=False)
        return parse_ufw_added(result.stdout)

    def add(self, executor: Executor, rule: FirewallRule) -> None:
        executor.run([self.executable, rule.action, rule.target])

    def delete(self, executor: Executor, rule: FirewallRule) -> None:
        executor.run([self.executable, "delete", rule.action, rule.target])


def parse_ufw_added(output: str) -> set[FirewallRule]:
    """Port rules from ``ufw show added``.

    Only the ``ufw ACTION [in] PORT/PROTO`` shape that converge writes is
    understood. Any other rule is ignored.
    """

    rules: set[FirewallRule] = set()
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 3 or parts[0] != "ufw":
            continue
        action = parts[1].lower()
        rest = parts[2:]
        if rest[0] == "in":
            rest = rest[1:]
        if not rest or (len(rest) > 1 and rest[1] != "comment"):
            continue
        port, _, proto = rest[0].partition("/")
        proto = proto.lower()
        if not port or proto not in {"tcp", "udp"}:
            continue
        rules.add(FirewallRule(port=port, proto=proto, action=action))
    return rules


class FirewallOperation(Operation):
    """Ensure a ufw rule for a port/protocol pair exists exactly once."""

    action = "firewall"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_port = spec.get("port")
        if raw_port is None or str(raw_port).strip() == "":
            raise ValueError("firewall operation requires a port")
        port = str(raw_port).strip()
        if not port.replace(":", "").isdigit():
            raise ValueError(f"firewall port must be a number or range, got '{port}'")
        proto = str(spec.get("proto", "tcp")).lower()
        if proto not in {"tcp", "udp"}:
            raise ValueError("firewall proto must be 'tcp' or 'udp'")
        rule = str(spec.get("rule", "allow")).lower()
        if rule not in {"allow", "deny", "reject", "limit"}:
            raise ValueError("firewall rule must be 'allow', 'deny', 'reject' or 'limit'")
        self.rule = FirewallRule(port=port, proto=proto, action=rule)
        self.state = self.parse_state(spec.get("state"), {"present", "absent"}, "present", "firewall")
        self.ufw = Ufw()

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if not self.ufw.available():
            raise ReconcileError("ufw is not available on this host", kind="firewall-missing")

        existing = {
            rule for rule in self.ufw.rules(executor)
            if rule.port == self.rule.port and rule.proto == self.rule.proto
        }
        changes: list[str] = []

        if self.state == "present":
            if self.rule in existing:
                return self.result(host, changes)
            conflicting = sorted(rule.action for rule in existing)
            if conflicting:
                raise ReconcileError(
                    f"{self.rule.target} already has rule(s) {', '.join(conflicting)}",
                    kind="port-conflict",
                )
            logger.debug("Adding firewall rule %s %s", self.rule.action, self.rule.target)
            if not executor.dry_run:
                self.ufw.add(executor, self.rule)
            changes.append(f"{self.rule.action} {self.rule.target}")
        elif self.rule in existing:
            logger.debug("Deleting firewall rule %s %s", self.rule.action, self.rule.target)
            if not executor.dry_run:
                self.ufw.delete(executor, self.rule)
            changes.append(f"removed {self.rule.target}")

        return self.result(host, changes)
