from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .errors import MissingVariable
from .types import HostConfig, Inventory

logger = logging.getLogger(__name__)


class VariableStore:
    """Read-only variable lookup for the hosts of an inventory.

    Scopes, lowest precedence first: role defaults, global variables, group
    variables in inventory declaration order (a later group overrides an
    earlier one), host variables.
    """

    def __init__(self, inventory: Inventory):
        self.inventory = inventory
        self._cache: dict[str, Mapping[str, Any]] = {}
        for host in inventory.hosts.values():
            self._cache[host.name] = MappingProxyType(self._merge(host))

    def _merge(self, host: HostConfig) -> dict[str, Any]:
        merged: dict[str, Any] = dict(self.inventory.variables)
        member_of: list[str] = []
        for group in self.inventory.groups.values():
            if host.name not in group.hosts:
                continue
            member_of.append(group.name)
            for key, value in group.variables.items():
                if key in merged and merged[key] != value:
                    logger.debug("host=%s var=%s overridden by group=%s", host.name, key, group.name)
                merged[key] = value
        merged.update(host.variables)
        merged["inventory_hostname"] = host.name
        merged["group_names"] = list(member_of)
        return merged

    def variables_for(
        self, host: HostConfig, defaults: Optional[Mapping[str, Any]] = None
    ) -> Mapping[str, Any]:
        try:
            scoped = self._cache[host.name]
        except KeyError:
            raise KeyError(f"Host '{host.name}' is not defined") from None
        if not defaults:
            return scoped
        merged = dict(defaults)
        merged.update(scoped)
        return MappingProxyType(merged)

    def resolve(self, host: HostConfig, key: str) -> Any:
        variables = self.variables_for(host)
        if key not in variables:
            raise MissingVariable(key, host=host.name)
        return variables[key]
