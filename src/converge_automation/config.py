from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULT_INVENTORY = Path("/etc/converge/inventory.toml")
DEFAULT_PLAYBOOK = Path("/etc/converge/site.toml")
BECOME_METHODS = {"sudo", "runuser"}


@dataclass
class ConvergeConfig:
    inventory: Path = DEFAULT_INVENTORY
    playbook: Path = DEFAULT_PLAYBOOK
    roles_path: Optional[Path] = None
    forks: int = 5
    force_handlers: bool = True
    become_method: str = "sudo"
    command_timeout: Optional[float] = None
    report: Optional[Path] = None


def load_config(path: Path) -> ConvergeConfig:
    if not path.exists():
        return ConvergeConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{path}: {exc}") from None
    defaults = data.get("defaults", {})
    roles_path = defaults.get("roles_path")
    command_timeout = defaults.get("command_timeout")
    report = defaults.get("report")
    forks = int(defaults.get("forks", 5))
    if forks < 1:
        raise ValueError(f"{path}: forks must be at least 1")
    become_method = str(defaults.get("become_method", "sudo"))
    if become_method not in BECOME_METHODS:
        raise ValueError(f"{path}: become_method must be one of {', '.join(sorted(BECOME_METHODS))}")
    return ConvergeConfig(
        inventory=Path(defaults.get("inventory", DEFAULT_INVENTORY)),
        playbook=Path(defaults.get("playbook", DEFAULT_PLAYBOOK)),
        roles_path=Path(roles_path) if roles_path else None,
        forks=forks,
        force_handlers=bool(defaults.get("force_handlers", True)),
        become_method=become_method,
        command_timeout=float(command_timeout) if command_timeout else None,
        report=Path(report) if report else None,
    )
