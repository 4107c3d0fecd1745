from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .base import Operation
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


@dataclass
class UserInfo:
    name: str
    shell: str
    home: str
    groups: list[str] = field(default_factory=list)


class UserManager:
    def get(self, executor: Executor, username: str) -> Optional[UserInfo]:
        result = executor.run(["getent", "passwd", username], check=False, mutable=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        fields = result.stdout.strip().splitlines()[0].split(":")
        if len(fields) < 7:
            return None
        # ``id -Gn`` includes the primary group
        groups = executor.run(["id", "-Gn", username], check=False, mutable=False)
        return UserInfo(
            name=fields[0],
            shell=fields[6],
            home=fields[5],
            groups=sorted(set(groups.stdout.split())) if groups.returncode == 0 else [],
        )

    def add(
        self,
        executor: Executor,
        name: str,
        *,
        shell: Optional[str],
        groups: list[str],
        system: bool,
        create_home: bool,
        comment: Optional[str],
    ) -> None:
        cmd = ["useradd"]
        if shell:
            cmd += ["--shell", shell]
        if groups:
            cmd += ["--groups", ",".join(groups)]
        if create_home:
            cmd.append("--create-home")
        if system:
            cmd.append("--system")
        if comment:
            cmd += ["--comment", comment]
        cmd.append(name)
        executor.run(cmd)

    def delete(self, executor: Executor, name: str, *, remove_home: bool) -> None:
        cmd = ["userdel"]
        if remove_home:
            cmd.append("--remove")
        cmd.append(name)
        executor.run(cmd)

    def set_shell(self, executor: Executor, name: str, shell: str) -> None:
        executor.run(["usermod", "--shell", shell, name])

    def add_groups(self, executor: Executor, name: str, groups: list[str]) -> None:
        executor.run(["usermod", "--append", "--groups", ",".join(groups), name])


class UserOperation(Operation):
    """Ensure OS user accounts exist with the requested shell and groups."""

    action = "user"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("user operation requires a name")
        self.name = str(raw_name)
        self.state = self.parse_state(spec.get("state"), {"present", "absent"}, "present", "user")
        self.shell = str(spec["shell"]) if spec.get("shell") else None
        raw_groups = spec.get("groups") or []
        if isinstance(raw_groups, str):
            raw_groups = [item.strip() for item in raw_groups.split(",") if item.strip()]
        self.groups = [str(item) for item in raw_groups]
        self.system = bool(self.to_bool(spec.get("system", False)))
        create_home = self.to_bool(spec.get("create_home"))
        self.create_home = True if create_home is None else create_home
        self.remove_home = bool(self.to_bool(spec.get("remove_home", False)))
        self.comment = str(spec["comment"]) if spec.get("comment") else None
        self.manager = UserManager()

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        info = self.manager.get(executor, self.name)
        changes: list[str] = []

        if self.state == "absent":
            if info:
                logger.debug("Removing user %s", self.name)
                if not executor.dry_run:
                    self.manager.delete(executor, self.name, remove_home=self.remove_home)
                changes.append("removed")
            return self.result(host, changes)

        if not info:
            logger.debug("Creating user %s", self.name)
            if not executor.dry_run:
                self.manager.add(
                    executor,
                    self.name,
                    shell=self.shell,
                    groups=self.groups,
                    system=self.system,
                    create_home=self.create_home,
                    comment=self.comment,
                )
            changes.append("created")
            return self.result(host, changes)

        if self.shell and info.shell != self.shell:
            logger.debug("Updating shell for %s", self.name)
            if not executor.dry_run:
                self.manager.set_shell(executor, self.name, self.shell)
            changes.append("shell")

        missing = [group for group in self.groups if group not in info.groups]
        if missing:
            logger.debug("Adding %s to groups %s", self.name, missing)
            if not executor.dry_run:
                self.manager.add_groups(executor, self.name, missing)
            changes.append(f"groups+={','.join(missing)}")

        return self.result(host, changes)
