from .base import Operation
from .cron import CronOperation
from .file import FileOperation, TemplateOperation
from .firewall import FirewallOperation
from .package import PackageOperation
from .postgresql import DatabaseOperation, DatabaseUserOperation
from .service import ServiceOperation
from .user import UserOperation
from ..types import ResourceKind

OPERATION_REGISTRY: dict[ResourceKind, type[Operation]] = {
    ResourceKind.PACKAGE: PackageOperation,
    ResourceKind.SERVICE: ServiceOperation,
    ResourceKind.FILE: FileOperation,
    ResourceKind.TEMPLATE: TemplateOperation,
    ResourceKind.FIREWALL: FirewallOperation,
    ResourceKind.CRON: CronOperation,
    ResourceKind.USER: UserOperation,
    ResourceKind.POSTGRESQL_DB: DatabaseOperation,
    ResourceKind.POSTGRESQL_USER: DatabaseUserOperation,
}

missing_kinds = set(ResourceKind) - set(OPERATION_REGISTRY)
if missing_kinds:  # pragma: no cover
    raise ImportError(f"no operation registered for {sorted(kind.value for kind in missing_kinds)}")
del missing_kinds

__all__ = [
    "Operation",
    "PackageOperation",
    "ServiceOperation",
    "FileOperation",
    "TemplateOperation",
    "FirewallOperation",
    "CronOperation",
    "UserOperation",
    "DatabaseOperation",
    "DatabaseUserOperation",
    "OPERATION_REGISTRY",
]
