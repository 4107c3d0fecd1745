from __future__ import annotations

from pathlib import Path
from typing import Any
import logging

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .types import GroupConfig, HostConfig, Inventory

logger = logging.getLogger(__name__)

GLOBAL_GROUP = "all"
LOCAL_ADDRESSES = (None, "localhost", "127.0.0.1", "::1")


def load_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        line = getattr(exc, "lineno", None)
        column = getattr(exc, "colno", None)
        location = f"{line}:{column}" if line is not None else "?"
        message = getattr(exc, "msg", str(exc))
        raise ValueError(f"{path}:{location} {message}") from None
    except FileNotFoundError:
        raise ValueError(f"{path}: file not found") from None


class InventoryLoader:
    """Loads hosts, groups and their variables from TOML files.

    ``group_vars/<group>.toml`` and ``host_vars/<host>.toml`` next to the
    inventory file are merged over the inline ``vars`` tables.
    """

    def load(self, path: Path) -> Inventory:
        path = Path(path)
        data = load_toml(path)
        base_dir = path.parent

        variables = self._mapping(data.get("vars", {}), f"{path}: vars")
        hosts: dict[str, HostConfig] = {}
        for name, payload in self._mapping(data.get("hosts", {}), f"{path}: hosts").items():
            hosts[name] = self._parse_host(name, payload, path)

        groups: dict[str, GroupConfig] = {}
        for name, payload in self._mapping(data.get("groups", {}), f"{path}: groups").items():
            payload = self._mapping(payload, f"{path}: group {name}")
            members = payload.get("hosts", [])
            if isinstance(members, str):
                members = [members]
            group_vars = self._mapping(payload.get("vars", {}), f"{path}: group {name} vars")
            if name == GLOBAL_GROUP:
                variables.update(group_vars)
                continue
            groups[name] = GroupConfig(name=name, hosts=[str(m) for m in members], variables=dict(group_vars))
            for member in groups[name].hosts:
                if member not in hosts:
                    hosts[member] = HostConfig(name=member)
                hosts[member].groups.append(name)

        if not hosts:
            hosts["localhost"] = HostConfig(name="localhost")

        variables.update(self._vars_file(base_dir / "group_vars" / f"{GLOBAL_GROUP}.toml"))
        for group in groups.values():
            group.variables.update(self._vars_file(base_dir / "group_vars" / f"{group.name}.toml"))
        for host in hosts.values():
            host.variables.update(self._vars_file(base_dir / "host_vars" / f"{host.name}.toml"))

        logger.debug("inventory=%s hosts=%d groups=%d", path, len(hosts), len(groups))
        return Inventory(hosts=hosts, groups=groups, variables=variables)

    def _parse_host(self, name: str, payload: Any, path: Path) -> HostConfig:
        payload = self._mapping(payload, f"{path}: host {name}")
        connection = str(payload.get("connection", "local"))
        address = payload.get("address")
        if connection == "local" and address not in LOCAL_ADDRESSES:
            raise ValueError(
                f"{path}: host {name} has address {address!r} but connection 'local' acts on this machine"
            )
        return HostConfig(
            name=name,
            connection=connection,
            address=address,
            variables=dict(self._mapping(payload.get("vars", {}), f"{path}: host {name} vars")),
        )

    @staticmethod
    def _vars_file(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        return load_toml(path)

    @staticmethod
    def _mapping(value: Any, where: str) -> dict[str, Any]:
        if not isinstance(value, dict):
            raise ValueError(f"{where} must be a table")
        return dict(value)
