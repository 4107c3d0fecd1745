from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union


class ResourceKind(str, Enum):
    PACKAGE = "package"
    SERVICE = "service"
    FILE = "file"
    TEMPLATE = "template"
    FIREWALL = "firewall"
    CRON = "cron"
    USER = "user"
    POSTGRESQL_DB = "postgresql_db"
    POSTGRESQL_USER = "postgresql_user"

    @classmethod
    def parse(cls, value: str) -> "ResourceKind":
        try:
            return cls(value)
        except ValueError:
            known = ", ".join(kind.value for kind in cls)
            raise ValueError(f"unknown resource kind '{value}' (expected one of: {known})") from None


class TaskStatus(str, Enum):
    OK = "ok"
    CHANGED = "changed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class HostConfig:
    name: str
    connection: str = "local"
    address: Optional[str] = None
    groups: list[str] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass
class GroupConfig:
    name: str
    hosts: list[str] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass
class Inventory:
    hosts: dict[str, HostConfig]
    groups: dict[str, GroupConfig] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)

    def select(self, pattern: Union[str, list[str]]) -> list[HostConfig]:
        """Resolve a host selector (group, host, ``all`` or a list) in declaration order."""

        patterns = [pattern] if isinstance(pattern, str) else list(pattern)
        names: list[str] = []
        for item in patterns:
            if item == "all":
                candidates = list(self.hosts)
            elif item in self.groups:
                candidates = list(self.groups[item].hosts)
            elif item in self.hosts:
                candidates = [item]
            else:
                raise KeyError(f"Host or group '{item}' is not defined")
            for name in candidates:
                if name not in names:
                    names.append(name)
        return [self.hosts[name] for name in names]


@dataclass
class TaskSpec:
    name: str
    kind: ResourceKind
    params: dict[str, Any]
    become: Optional[bool] = None
    become_user: Optional[str] = None
    notify: list[str] = field(default_factory=list)
    role: Optional[str] = None


@dataclass
class HandlerSpec(TaskSpec):
    pass


@dataclass
class ImportTasks:
    file: str


TaskEntry = Union[TaskSpec, ImportTasks]


@dataclass
class RoleSpec:
    name: str
    tasks: list[TaskEntry] = field(default_factory=list)
    task_files: dict[str, list[TaskEntry]] = field(default_factory=dict)
    handlers: list[HandlerSpec] = field(default_factory=list)
    defaults: dict[str, Any] = field(default_factory=dict)
    path: Optional[Path] = None


@dataclass
class PlaySpec:
    name: str
    hosts: Union[str, list[str]]
    roles: list[str] = field(default_factory=list)
    tasks: list[TaskEntry] = field(default_factory=list)
    handlers: list[HandlerSpec] = field(default_factory=list)
    become: bool = False
    become_user: Optional[str] = None


@dataclass
class Playbook:
    plays: list[PlaySpec]
    roles: dict[str, RoleSpec] = field(default_factory=dict)
    task_files: dict[str, list[TaskEntry]] = field(default_factory=dict)
    path: Optional[Path] = None


@dataclass
class ComposedPlay:
    play: PlaySpec
    tasks: list[TaskSpec]
    handlers: dict[str, HandlerSpec]
    defaults: dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionResult:
    host: str
    action: str
    changed: bool
    details: str
    failed: bool = False
    resource: Optional[str] = None
    task: Optional[str] = None
    skipped: bool = False
    handler: bool = False

    @property
    def status(self) -> TaskStatus:
        if self.failed:
            return TaskStatus.FAILED
        if self.skipped:
            return TaskStatus.SKIPPED
        if self.changed:
            return TaskStatus.CHANGED
        return TaskStatus.OK
