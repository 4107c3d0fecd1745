from __future__ import annotations

from typing import Iterable, Optional
import logging
import shutil

from .base import Operation
from ..errors import CommandError, ReconcileError
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


class PackageOperation(Operation):
    """Install or remove packages using the detected package manager."""

    action = "package"

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        packages = spec.get("name") or spec.get("packages")
        if isinstance(packages, str):
            self.packages = [packages]
        else:
            self.packages = [str(pkg) for pkg in (packages or [])]
        if not self.packages:
            raise ValueError("package operation requires at least one package")
        self.state = self.parse_state(spec.get("state"), {"present", "absent"}, "present", "package")
        self.update_cache = bool(self.to_bool(spec.get("update_cache", False)))
        self.preferred_manager = spec.get("manager")

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        manager = PackageManagerFactory.create(self.preferred_manager)
        logger.debug("package-manager=%s host=%s packages=%s", manager.name, host.name, self.packages)
        try:
            if self.state == "present":
                changed, details = manager.ensure_present(executor, self.packages, refresh=self.update_cache)
            else:
                changed, details = manager.ensure_absent(executor, self.packages)
        except CommandError as exc:
            kind = "package-not-found" if self.state == "present" else "package-remove-failed"
            raise ReconcileError(f"{', '.join(self.packages)}: {exc.stderr.strip() or exc}", kind=kind) from None
        detail_msg = f"manager={manager.name} {details}"
        return ActionResult(host=host.name, action=self.action, changed=changed, details=detail_msg)


class PackageManagerFactory:
    _MANAGERS = [
        ("apt-get", "apt", lambda: AptPackageManager()),
        ("dnf", "dnf", lambda: DnfPackageManager()),
        ("yum", "yum", lambda: YumPackageManager()),
        ("brew", "brew", lambda: BrewPackageManager()),
        ("pacman", "pacman", lambda: PacmanPackageManager()),
    ]

    @classmethod
    def create(cls, preferred: Optional[object]) -> "PackageManager":
        if isinstance(preferred, str):
            preferred = preferred.lower()
            for _, key, factory in cls._MANAGERS:
                if key == preferred:
                    return factory()
            raise ValueError(f"Unknown package manager '{preferred}'")
        for binary, _, factory in cls._MANAGERS:
            if shutil.which(binary):
                return factory()
        raise ReconcileError("No supported package manager found on PATH", kind="package-manager-missing")


class PackageManager:
    name = "generic"

    def ensure_present(
        self, executor: Executor, packages: Iterable[str], *, refresh: bool = False
    ) -> tuple[bool, str]:
        needed = [pkg for pkg in packages if not self.is_installed(executor, pkg)]
        if not needed:
            return False, "already-installed"
        if not executor.dry_run:
            if refresh:
                self.refresh(executor)
            self.install(executor, needed)
        return True, f"installed={','.join(needed)}"

    def ensure_absent(self, executor: Executor, packages: Iterable[str]) -> tuple[bool, str]:
        removable = [pkg for pkg in packages if self.is_installed(executor, pkg)]
        if not removable:
            return False, "already-removed"
        if not executor.dry_run:
            self.remove(executor, removable)
        return True, f"removed={','.join(removable)}"

    def refresh(self, executor: Executor) -> None:
        """Refresh package metadata; a no-op for managers that do it on install."""

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def remove(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError


class AptPackageManager(PackageManager):
    name = "apt"

    def refresh(self, executor: Executor) -> None:
        executor.run(["apt-get", "update"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "install", "-y", *packages], env={"DEBIAN_FRONTEND": "noninteractive"})

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "remove", "-y", *packages], env={"DEBIAN_FRONTEND": "noninteractive"})

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(
            ["dpkg-query", "-W", "-f", "${Status}", package],
            check=False,
            mutable=False,
        )
        words = result.stdout.split()
        return result.returncode == 0 and bool(words) and words[-1] == "installed"


class DnfPackageManager(PackageManager):
    name = "dnf"

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.name, "install", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.name, "remove", "-y", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["rpm", "-q", package], check=False, mutable=False)
        return result.returncode == 0


class YumPackageManager(DnfPackageManager):
    name = "yum"


class BrewPackageManager(PackageManager):
    name = "brew"

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["brew", "install", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["brew", "uninstall", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["brew", "list", package], check=False, mutable=False)
        return result.returncode == 0


class PacmanPackageManager(PackageManager):
    name = "pacman"

    def refresh(self, executor: Executor) -> None:
        executor.run(["pacman", "-Sy"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["pacman", "-S", "--noconfirm", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["pacman", "-R", "--noconfirm", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["pacman", "-Qi", package], check=False, mutable=False)
        return result.returncode == 0
