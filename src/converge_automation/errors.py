from __future__ import annotations

from typing import Iterable, Optional


class ConvergeError(Exception):
    """Base class for errors raised while converging a host."""


class MissingVariable(ConvergeError):
    """A variable was referenced but is not defined in any scope."""

    def __init__(self, name: str, host: Optional[str] = None):
        self.name = name
        self.host = host
        where = f" for host '{host}'" if host else ""
        super().__init__(f"variable '{name}' is undefined{where}")


class RenderError(ConvergeError):
    """A template could not be rendered."""

    def __init__(self, message: str, missing: Iterable[str] = ()):
        super().__init__(message)
        self.missing = sorted(missing)


class ReconcileError(ConvergeError):
    """A resource could not be brought to its desired state."""

    def __init__(self, message: str, kind: str = "reconcile-failed"):
        super().__init__(message)
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind}: {self.args[0]}"


class CommandError(ReconcileError):
    """A mutating command exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stdout: str = "", stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        output = (stderr or stdout).strip()
        message = f"'{' '.join(command)}' exited with {returncode}"
        if output:
            message = f"{message}: {output}"
        super().__init__(message, kind="command-failed")


class TransportError(ConvergeError):
    """The connection to a host failed or a command timed out."""


class HandlerError(ConvergeError):
    """A notified handler failed."""

    def __init__(self, handler: str, reason: str):
        super().__init__(f"handler '{handler}' failed: {reason}")
        self.handler = handler
        self.reason = reason


class ComposeError(ConvergeError, ValueError):
    """A playbook or role could not be expanded into a task list."""
