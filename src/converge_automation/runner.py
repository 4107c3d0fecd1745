from __future__ import annotations

import dataclasses
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Mapping, Optional

from .composer import compose_play
from .errors import ConvergeError, HandlerError, MissingVariable
from .executors import ExecutionContext, Executor, executor_for
from .operations import OPERATION_REGISTRY
from .report import RunReport
from .templating import TemplateRenderer
from .types import ActionResult, ComposedPlay, HostConfig, Inventory, Playbook, TaskSpec
from .variables import VariableStore

logger = logging.getLogger(__name__)


def _resource_name(data: Mapping[str, Any]) -> Optional[str]:
    for key in ("name", "path", "dest", "port"):
        value = data.get(key)
        if value:
            return str(value)
    return None


class HostRunner:
    """Runs one host's composed task list, then the handlers its tasks notified.

    Tasks run strictly in order. The first failure stops the remaining tasks
    for this host; they are reported as skipped. Handlers run once each, in
    the order they were first notified.
    """

    def __init__(
        self,
        host: HostConfig,
        composed: ComposedPlay,
        variables: Mapping[str, Any],
        executor: Executor,
        *,
        become_method: str = "sudo",
        force_handlers: bool = True,
        cancel_event: Optional[threading.Event] = None,
        renderer: Optional[TemplateRenderer] = None,
    ):
        self.host = dataclasses.replace(host, variables=dict(variables))
        self.composed = composed
        self.variables = variables
        self.executor = executor
        self.become_method = become_method
        self.force_handlers = force_handlers
        self.cancel_event = cancel_event or threading.Event()
        self.renderer = renderer or TemplateRenderer()
        self.failed = False
        self.notified: list[str] = []

    def run(self) -> list[ActionResult]:
        results = self.run_tasks()
        results.extend(self.run_handlers())
        return results

    def run_tasks(self) -> list[ActionResult]:
        results: list[ActionResult] = []
        for task in self.composed.tasks:
            if self.cancel_event.is_set():
                results.append(self._skipped(task, "cancelled"))
                continue
            if self.failed:
                results.append(self._skipped(task, "not run: earlier task failed"))
                continue
            result = self._execute(task)
            results.append(result)
            if result.failed:
                self.failed = True
            elif result.changed:
                for name in task.notify:
                    if name not in self.notified:
                        self.notified.append(name)
        return results

    def run_handlers(self) -> list[ActionResult]:
        results: list[ActionResult] = []
        halted: Optional[str] = None
        if self.failed and not self.force_handlers:
            halted = "not run: host failed"
        for name in self.notified:
            handler = self.composed.handlers[name]
            if halted is None and self.cancel_event.is_set():
                halted = "cancelled"
            if halted is not None:
                results.append(self._skipped(handler, halted, handler=True))
                continue
            result = self._execute(handler)
            result.handler = True
            if result.failed:
                self.failed = True
                result.details = str(HandlerError(name, result.details))
                halted = "not run: earlier handler failed"
            results.append(result)
        return results

    def _execute(self, task: TaskSpec) -> ActionResult:
        logger.debug("host=%s task=%s state=running", self.host.name, task.name)
        resource = None
        try:
            params = self.renderer.render_params(task.params, self.variables)
            resource = _resource_name(params)
            operation = OPERATION_REGISTRY[task.kind](params)
            result = operation.apply(self.host, self.executor.for_context(self._context(task)))
        except MissingVariable as exc:
            exc.host = self.host.name
            logger.error("task=%s host=%s failed: %s", task.name, self.host.name, exc)
            result = self._failed(task, f"missing variable: {exc.name}")
        except ConvergeError as exc:
            logger.error("task=%s host=%s failed: %s", task.name, self.host.name, exc)
            result = self._failed(task, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error("task=%s host=%s failed: %s", task.name, self.host.name, exc, exc_info=True)
            result = self._failed(task, str(exc) or type(exc).__name__)
        result.task = task.name
        if result.resource is None:
            result.resource = resource or _resource_name(task.params)
        logger.debug(
            "host=%s task=%s changed=%s failed=%s", self.host.name, task.name, result.changed, result.failed
        )
        return result

    def _context(self, task: TaskSpec) -> ExecutionContext:
        play = self.composed.play
        become = play.become if task.become is None else task.become
        if task.become_user:
            become = True
        return ExecutionContext(
            become=become,
            become_user=task.become_user or play.become_user,
            become_method=self.become_method,
        )

    def _failed(self, task: TaskSpec, details: str) -> ActionResult:
        return failed_result(self.host.name, task, details)

    def _skipped(self, task: TaskSpec, details: str, handler: bool = False) -> ActionResult:
        return skipped_result(self.host.name, task, details, handler=handler)


def failed_result(host: str, task: TaskSpec, details: str) -> ActionResult:
    return ActionResult(
        host=host,
        action=task.kind.value,
        changed=False,
        details=details,
        failed=True,
        resource=_resource_name(task.params),
        task=task.name,
    )


def skipped_result(host: str, task: TaskSpec, details: str, handler: bool = False) -> ActionResult:
    return ActionResult(
        host=host,
        action=task.kind.value,
        changed=False,
        details=details,
        skipped=True,
        resource=_resource_name(task.params),
        task=task.name,
        handler=handler,
    )


class PlaybookRunner:
    """Runs every play of a playbook across its hosts, ``forks`` hosts at a time."""

    def __init__(
        self,
        inventory: Inventory,
        playbook: Playbook,
        *,
        forks: int = 5,
        dry_run: bool = False,
        force_handlers: bool = True,
        become_method: str = "sudo",
        command_timeout: Optional[float] = None,
    ):
        self.inventory = inventory
        self.playbook = playbook
        self.forks = max(1, int(forks))
        self.dry_run = dry_run
        self.force_handlers = force_handlers
        self.become_method = become_method
        self.command_timeout = command_timeout
        self.store = VariableStore(inventory)
        self.renderer = TemplateRenderer()
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop starting new tasks; in-flight tasks finish and the rest are skipped."""

        if not self._cancel.is_set():
            logger.warning("Cancellation requested; finishing in-flight tasks")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self) -> RunReport:
        composed_plays = [compose_play(self.playbook, play) for play in self.playbook.plays]
        selections = [self.inventory.select(play.hosts) for play in self.playbook.plays]

        report = RunReport(dry_run=self.dry_run)
        failed_hosts: set[str] = set()
        for composed, hosts in zip(composed_plays, selections):
            logger.info("play=%s hosts=%s", composed.play.name, ",".join(h.name for h in hosts))
            with ThreadPoolExecutor(max_workers=self.forks, thread_name_prefix="converge") as pool:
                futures = [
                    (host, pool.submit(self._run_host, host, composed, host.name in failed_hosts))
                    for host in hosts
                ]
                for host, future in futures:
                    results = future.result()
                    report.add(composed.play.name, results)
                    if any(result.failed for result in results):
                        failed_hosts.add(host.name)
        report.cancelled = self.cancelled
        return report

    def _run_host(self, host: HostConfig, composed: ComposedPlay, already_failed: bool) -> list[ActionResult]:
        if already_failed:
            reason = "not run: host failed in an earlier play"
            return [skipped_result(host.name, task, reason) for task in composed.tasks]
        if self._cancel.is_set():
            return [skipped_result(host.name, task, "cancelled") for task in composed.tasks]
        try:
            executor = executor_for(host, dry_run=self.dry_run, timeout=self.command_timeout)
        except ConvergeError as exc:
            logger.error("host=%s unreachable: %s", host.name, exc)
            if not composed.tasks:
                return []
            first, *rest = composed.tasks
            results = [failed_result(host.name, first, str(exc))]
            results.extend(skipped_result(host.name, task, "not run: host unreachable") for task in rest)
            return results
        runner = HostRunner(
            host,
            composed,
            self.store.variables_for(host, defaults=composed.defaults),
            executor,
            become_method=self.become_method,
            force_handlers=self.force_handlers,
            cancel_event=self._cancel,
            renderer=self.renderer,
        )
        return runner.run()
