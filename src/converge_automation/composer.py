from __future__ import annotations

import logging
from typing import Any, Optional

from .errors import ComposeError
from .types import (
    ComposedPlay,
    HandlerSpec,
    ImportTasks,
    PlaySpec,
    Playbook,
    TaskEntry,
    TaskSpec,
)

logger = logging.getLogger(__name__)


def compose_play(playbook: Playbook, play: PlaySpec) -> ComposedPlay:
    """Flatten a play's roles, imports and inline tasks into declaration order.

    Role tasks come first, in the order the roles are listed, followed by
    the play's inline tasks. No files are read and no variables are resolved.
    """

    tasks: list[TaskSpec] = []
    handlers: dict[str, HandlerSpec] = {}
    defaults: dict[str, Any] = {}

    for role_name in play.roles:
        role = playbook.roles.get(role_name)
        if role is None:
            raise ComposeError(f"play '{play.name}' references unknown role '{role_name}'")
        tasks.extend(_expand(role.tasks, role.task_files, origin=f"role {role.name}"))
        _merge_handlers(handlers, role.handlers, origin=f"role {role.name}")
        defaults.update(role.defaults)

    tasks.extend(_expand(play.tasks, playbook.task_files, origin=f"play {play.name}"))
    _merge_handlers(handlers, play.handlers, origin=f"play {play.name}")

    for task in tasks:
        for name in task.notify:
            if name not in handlers:
                raise ComposeError(f"task '{task.name}' notifies unknown handler '{name}'")

    logger.debug("play=%s tasks=%d handlers=%d", play.name, len(tasks), len(handlers))
    return ComposedPlay(play=play, tasks=tasks, handlers=handlers, defaults=defaults)


def _expand(
    entries: list[TaskEntry],
    task_files: dict[str, list[TaskEntry]],
    *,
    origin: str,
    stack: Optional[tuple[str, ...]] = None,
) -> list[TaskSpec]:
    stack = stack or ()
    flat: list[TaskSpec] = []
    for entry in entries:
        if isinstance(entry, TaskSpec):
            flat.append(entry)
            continue
        if not isinstance(entry, ImportTasks):
            raise ComposeError(f"{origin}: unsupported task entry {entry!r}")
        if entry.file in stack:
            chain = " -> ".join((*stack, entry.file))
            raise ComposeError(f"{origin}: recursive import_tasks {chain}")
        if entry.file not in task_files:
            raise ComposeError(f"{origin}: import_tasks file '{entry.file}' not found")
        flat.extend(
            _expand(task_files[entry.file], task_files, origin=origin, stack=(*stack, entry.file))
        )
    return flat


def _merge_handlers(
    table: dict[str, HandlerSpec], handlers: list[HandlerSpec], *, origin: str
) -> None:
    seen: set[str] = set()
    for handler in handlers:
        if handler.name in seen:
            raise ComposeError(f"{origin}: duplicate handler '{handler.name}'")
        seen.add(handler.name)
        if handler.name in table:
            logger.debug("handler=%s redefined by %s", handler.name, origin)
        table[handler.name] = handler
