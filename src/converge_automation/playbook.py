from __future__ import annotations

from pathlib import Path
from typing import Any, Optional
import logging

from .inventory import load_toml
from .types import (
    HandlerSpec,
    ImportTasks,
    PlaySpec,
    Playbook,
    ResourceKind,
    RoleSpec,
    TaskEntry,
    TaskSpec,
)

logger = logging.getLogger(__name__)

TASK_KEYS = {"name", "notify", "become", "become_user"}
MAIN_FILE = "main.toml"


class PlaybookLoader:
    """Loads a playbook TOML file and every role and task file it references.

    Roles live in ``<roles_path>/<role>/`` with ``tasks/*.toml``,
    ``handlers/main.toml``, ``defaults/main.toml`` and ``templates/``.
    """

    def __init__(self, roles_path: Optional[Path] = None):
        self.roles_path = roles_path

    def load(self, path: Path) -> Playbook:
        path = Path(path)
        base_dir = path.parent
        data = load_toml(path)
        raw_plays = data.get("plays", [])
        if not isinstance(raw_plays, list) or not raw_plays:
            raise ValueError(f"{path}: a playbook needs at least one [[plays]] entry")

        playbook = Playbook(plays=[], path=path)
        for index, raw in enumerate(raw_plays, start=1):
            if not isinstance(raw, dict):
                raise ValueError(f"{path}: play {index} must be a table")
            play = self._parse_play(raw, index, path, base_dir)
            playbook.plays.append(play)
            self._collect_imports(play.tasks, playbook.task_files, base_dir, path)
            for role_name in play.roles:
                if role_name not in playbook.roles:
                    playbook.roles[role_name] = self.load_role(role_name, base_dir)
        return playbook

    def _parse_play(self, raw: dict[str, Any], index: int, path: Path, base_dir: Path) -> PlaySpec:
        where = f"{path}: play {index}"
        hosts = raw.get("hosts")
        if not hosts:
            raise ValueError(f"{where} is missing hosts")
        if not isinstance(hosts, (str, list)):
            raise ValueError(f"{where} hosts must be a string or list")
        roles = raw.get("roles", [])
        if isinstance(roles, str):
            roles = [roles]
        extra = {"_playbook_dir": str(base_dir)}
        return PlaySpec(
            name=str(raw.get("name", f"play-{index}")),
            hosts=hosts if isinstance(hosts, str) else [str(h) for h in hosts],
            roles=[str(role) for role in roles],
            tasks=self.parse_entries(raw.get("tasks", []), where, extra),
            handlers=self.parse_handlers(raw.get("handlers", []), where, extra),
            become=bool(raw.get("become", False)),
            become_user=str(raw["become_user"]) if raw.get("become_user") else None,
        )

    def load_role(self, name: str, base_dir: Path) -> RoleSpec:
        roles_dir = self.roles_path or base_dir / "roles"
        role_dir = roles_dir / name
        if not role_dir.is_dir():
            raise ValueError(f"role '{name}' not found in {roles_dir}")
        extra = {"_role_dir": str(role_dir), "_playbook_dir": str(base_dir)}

        task_files: dict[str, list[TaskEntry]] = {}
        tasks_dir = role_dir / "tasks"
        if tasks_dir.is_dir():
            for task_file in sorted(tasks_dir.glob("*.toml")):
                data = load_toml(task_file)
                task_files[task_file.name] = self.parse_entries(
                    data.get("tasks", []), str(task_file), extra, role=name
                )

        handlers: list[HandlerSpec] = []
        handler_file = role_dir / "handlers" / MAIN_FILE
        if handler_file.exists():
            data = load_toml(handler_file)
            handlers = self.parse_handlers(data.get("handlers", []), str(handler_file), extra, role=name)

        defaults: dict[str, Any] = {}
        defaults_file = role_dir / "defaults" / MAIN_FILE
        if defaults_file.exists():
            defaults = load_toml(defaults_file)

        logger.debug("role=%s task_files=%s handlers=%d", name, sorted(task_files), len(handlers))
        return RoleSpec(
            name=name,
            tasks=task_files.get(MAIN_FILE, []),
            task_files=task_files,
            handlers=handlers,
            defaults=defaults,
            path=role_dir,
        )

    def _collect_imports(
        self,
        entries: list[TaskEntry],
        task_files: dict[str, list[TaskEntry]],
        base_dir: Path,
        origin: Path,
    ) -> None:
        for entry in entries:
            if not isinstance(entry, ImportTasks) or entry.file in task_files:
                continue
            task_path = base_dir / entry.file
            if not task_path.exists():
                raise ValueError(f"{origin}: import_tasks file '{entry.file}' not found")
            data = load_toml(task_path)
            task_files[entry.file] = self.parse_entries(
                data.get("tasks", []), str(task_path), {"_playbook_dir": str(base_dir)}
            )
            self._collect_imports(task_files[entry.file], task_files, base_dir, task_path)

    def parse_entries(
        self,
        raw_entries: Any,
        where: str,
        extra: dict[str, Any],
        role: Optional[str] = None,
    ) -> list[TaskEntry]:
        if not isinstance(raw_entries, list):
            raise ValueError(f"{where}: tasks must be an array of tables")
        entries: list[TaskEntry] = []
        for index, raw in enumerate(raw_entries, start=1):
            if not isinstance(raw, dict):
                raise ValueError(f"{where}: task {index} must be a table")
            if "import_tasks" in raw:
                entries.append(ImportTasks(file=str(raw["import_tasks"])))
                continue
            entries.append(self._parse_task(raw, f"{where}: task {index}", extra, role, TaskSpec))
        return entries

    def parse_handlers(
        self,
        raw_handlers: Any,
        where: str,
        extra: dict[str, Any],
        role: Optional[str] = None,
    ) -> list[HandlerSpec]:
        if not isinstance(raw_handlers, list):
            raise ValueError(f"{where}: handlers must be an array of tables")
        handlers: list[HandlerSpec] = []
        for index, raw in enumerate(raw_handlers, start=1):
            if not isinstance(raw, dict):
                raise ValueError(f"{where}: handler {index} must be a table")
            handler = self._parse_task(raw, f"{where}: handler {index}", extra, role, HandlerSpec)
            if "name" not in raw:
                raise ValueError(f"{where}: handler {index} is missing a name")
            if handler.notify:
                raise ValueError(f"{where}: handler '{handler.name}' cannot notify other handlers")
            handlers.append(handler)
        return handlers

    @staticmethod
    def _parse_task(raw: dict[str, Any], where: str, extra: dict[str, Any], role: Optional[str], cls):
        kinds = [key for key in raw if key not in TASK_KEYS]
        if len(kinds) != 1:
            found = ", ".join(kinds) if kinds else "none"
            raise ValueError(f"{where} must name exactly one resource kind (found: {found})")
        try:
            kind = ResourceKind.parse(kinds[0])
        except ValueError as exc:
            raise ValueError(f"{where}: {exc}") from None
        params = raw[kinds[0]]
        if not isinstance(params, dict):
            raise ValueError(f"{where}: {kind.value} parameters must be a table")
        params = {**params, **extra}

        notify = raw.get("notify", [])
        if isinstance(notify, str):
            notify = [notify]
        become = raw.get("become")
        resource = params.get("name") or params.get("path") or params.get("dest") or params.get("port")
        default_name = f"{kind.value} {resource}" if resource else kind.value
        return cls(
            name=str(raw.get("name", default_name)),
            kind=kind,
            params=params,
            become=None if become is None else bool(become),
            become_user=str(raw["become_user"]) if raw.get("become_user") else None,
            notify=[str(item) for item in notify],
            role=role,
        )
