from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..executors import Executor
from ..types import ActionResult, HostConfig


class Operation(ABC):
    """Shared surface for resource reconcilers.

    ``apply`` observes the current state through ``executor``, performs the
    smallest change that reaches the desired state and reports whether
    anything changed. Applying twice with the same spec must report
    ``changed=False`` the second time.
    """

    action = "operation"

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec

    @abstractmethod
    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        """Perform the operation against ``host`` using ``executor``."""

    def result(self, host: HostConfig, changes: list[str]) -> ActionResult:
        detail = ", ".join(changes) if changes else "noop"
        return ActionResult(host=host.name, action=self.action, changed=bool(changes), details=detail)

    @staticmethod
    def to_bool(value: Any) -> Optional[bool]:
        if value is None:
            return None
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"true", "yes", "on", "1"}:
                return True
            if lowered in {"false", "no", "off", "0"}:
                return False
            raise ValueError(f"Unable to interpret boolean value '{value}'")
        return bool(value)

    @staticmethod
    def parse_state(value: Any, allowed: set[str], default: str, action: str) -> str:
        state = str(value if value is not None else default)
        if state not in allowed:
            options = ", ".join(f"'{item}'" for item in sorted(allowed))
            raise ValueError(f"{action} state must be one of {options}")
        return state
