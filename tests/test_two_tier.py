"""Converge the bundled two-tier example twice against a simulated pair of hosts."""

from pathlib import Path
import shutil
import stat
from typing import Optional

import pytest

from converge_automation import executors
from converge_automation.inventory import InventoryLoader
from converge_automation.operations import firewall, package, postgresql, service, user
from converge_automation.operations.firewall import FirewallRule
from converge_automation.operations.package import PackageManager
from converge_automation.operations.user import UserInfo
from converge_automation.playbook import PlaybookLoader
from converge_automation.runner import PlaybookRunner

EXAMPLE = Path(__file__).resolve().parent.parent / "examples" / "two_tier"


class World:
    """Per-host state shared by the fake managers."""

    def __init__(self):
        self.hosts: dict[str, dict] = {}
        self.commands: list[tuple[str, str]] = []

    def host(self, executor) -> dict:
        return self.hosts.setdefault(
            executor.host.name,
            {
                "packages": set(),
                "enabled": set(),
                "active": set(),
                "rules": set(),
                "databases": set(),
                "roles": {},
                "grants": {},
                "users": {},
            },
        )

    def record(self, executor, action: str) -> None:
        self.commands.append((executor.host.name, action))


@pytest.fixture
def world(monkeypatch) -> World:
    world = World()

    class FakePackageManager(PackageManager):
        name = "fake"

        def install(self, executor, packages):  # type: ignore[override]
            world.host(executor)["packages"].update(packages)
            world.record(executor, f"install {' '.join(packages)}")

        def remove(self, executor, packages):  # type: ignore[override]
            world.host(executor)["packages"].difference_update(packages)

        def is_installed(self, executor, package_name):  # type: ignore[override]
            return package_name in world.host(executor)["packages"]

    class FakeSystemCtl:
        def available(self) -> bool:
            return True

        def is_enabled(self, executor, name):
            return name in world.host(executor)["enabled"]

        def is_active(self, executor, name):
            return name in world.host(executor)["active"]

        def enable(self, executor, name):
            world.host(executor)["enabled"].add(name)

        def disable(self, executor, name):
            world.host(executor)["enabled"].discard(name)

        def start(self, executor, name):
            world.host(executor)["active"].add(name)

        def stop(self, executor, name):
            world.host(executor)["active"].discard(name)

        def restart(self, executor, name):
            world.record(executor, f"restart {name}")

        def reload(self, executor, name):
            world.record(executor, f"reload {name}")

    class FakeUfw:
        def available(self) -> bool:
            return True

        def rules(self, executor):
            return set(world.host(executor)["rules"])

        def add(self, executor, rule: FirewallRule):
            world.host(executor)["rules"].add(rule)

        def delete(self, executor, rule: FirewallRule):
            world.host(executor)["rules"].discard(rule)

    class FakePsql:
        def __init__(self, login_db: str = "postgres"):
            self.login_db = login_db

        def available(self) -> bool:
            return True

        def database_exists(self, executor, name):
            assert executor.context.user == "postgres"
            return name in world.host(executor)["databases"]

        def create_database(self, executor, name, *, owner):
            world.host(executor)["databases"].add(name)

        def drop_database(self, executor, name):
            world.host(executor)["databases"].discard(name)

        def role_exists(self, executor, name):
            return name in world.host(executor)["roles"]

        def create_role(self, executor, name, *, password):
            world.host(executor)["roles"][name] = password

        def drop_role(self, executor, name, *, database):
            world.host(executor)["roles"].pop(name, None)

        def granted_privileges(self, executor, role, database):
            return set(world.host(executor)["grants"].get((role, database), set()))

        def grant(self, executor, role, database, privileges):
            world.host(executor)["grants"].setdefault((role, database), set()).update(privileges)

    class FakeUserManager:
        def get(self, executor, username) -> Optional[UserInfo]:
            return world.host(executor)["users"].get(username)

        def add(self, executor, name, *, shell, groups, system, create_home, comment):
            world.host(executor)["users"][name] = UserInfo(name=name, shell=shell, home=f"/home/{name}")

        def delete(self, executor, name, *, remove_home):
            world.host(executor)["users"].pop(name, None)

        def set_shell(self, executor, name, shell):
            world.host(executor)["users"][name].shell = shell

        def add_groups(self, executor, name, groups):
            world.host(executor)["users"][name].groups.extend(groups)

    monkeypatch.setattr(
        package.PackageManagerFactory, "create", classmethod(lambda cls, preferred: FakePackageManager())
    )
    monkeypatch.setattr(service, "SystemCtl", FakeSystemCtl)
    monkeypatch.setattr(firewall, "Ufw", FakeUfw)
    monkeypatch.setattr(postgresql, "Psql", FakePsql)
    monkeypatch.setattr(user, "UserManager", FakeUserManager)
    # file primitives stay in-process for the play's root become
    monkeypatch.setattr(executors, "_current_user", lambda: "root")
    return world


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "two_tier"
    shutil.copytree(EXAMPLE, root)
    out = tmp_path / "hosts"
    host_vars = root / "host_vars"
    host_vars.mkdir()
    (host_vars / "web1.example.com.toml").write_text(
        f'nginx_conf_path = "{out}/web1/nginx.conf"\n'
        f'document_root = "{out}/web1/html"\n'
        f'backup_dir = "{out}/web1/backups"\n'
    )
    (host_vars / "db1.example.com.toml").write_text(
        f'backup_dir = "{out}/db1/backups"\n'
        f'cron_dir = "{out}/db1/cron.d"\n'
    )
    return root


def converge(project: Path, **kwargs):
    inventory = InventoryLoader().load(project / "inventory.toml")
    playbook = PlaybookLoader().load(project / "site.toml")
    return PlaybookRunner(inventory, playbook, **kwargs).run()


def test_two_tier_converges_then_is_idempotent(project: Path, world: World):
    first = converge(project, forks=2)

    assert first.succeeded, [(r.host, r.task, r.details) for r in first.failures]
    stats = first.stats
    assert set(stats) == {"web1.example.com", "db1.example.com"}
    assert stats["web1.example.com"].changed > 0
    assert stats["db1.example.com"].changed > 0

    out = project.parent / "hosts"
    nginx_conf = (out / "web1" / "nginx.conf").read_text()
    assert "listen 80;" in nginx_conf
    assert "worker_connections 768;" in nginx_conf
    assert f"root {out}/web1/html;" in nginx_conf
    assert "Served by web1.example.com" in (out / "web1" / "html" / "index.html").read_text()
    assert stat.S_IMODE((out / "web1" / "backups").stat().st_mode) == 0o750
    assert (out / "db1" / "cron.d" / "backup-company_db").read_text().endswith(
        f"0 2 * * * postgres pg_dump company_db > {out}/db1/backups/company_db.sql\n"
    )

    web = world.hosts["web1.example.com"]
    db = world.hosts["db1.example.com"]
    assert web["packages"] == {"nginx"}
    assert web["rules"] == {FirewallRule("80", "tcp")}
    assert db["rules"] == {FirewallRule("5432", "tcp")}
    assert db["databases"] == {"company_db"}
    assert db["grants"][("company_user", "company_db")] == {"CREATE", "CONNECT", "TEMPORARY"}
    assert web["users"]["deploy"].shell == "/bin/bash"
    assert ("web1.example.com", "restart nginx") in world.commands
    assert ("db1.example.com", "reload postgresql") in world.commands

    world.commands.clear()
    second = converge(project, forks=2)

    assert second.succeeded
    assert all(s.changed == 0 for s in second.stats.values())
    assert not [r for r in second.results if r.handler]
    assert world.commands == []


def test_two_tier_check_mode_changes_nothing(project: Path, world: World):
    report = converge(project, dry_run=True)

    assert report.succeeded
    assert report.dry_run is True
    assert not (project.parent / "hosts").exists()
    assert world.hosts["web1.example.com"]["packages"] == set()
    assert ("web1.example.com", "restart nginx") not in world.commands
