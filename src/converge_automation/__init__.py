"""Converge: declarative host convergence from TOML playbooks."""

from .inventory import InventoryLoader
from .playbook import PlaybookLoader
from .runner import PlaybookRunner

__all__ = ["InventoryLoader", "PlaybookLoader", "PlaybookRunner"]
