from pathlib import Path
import textwrap

import pytest

from converge_automation.playbook import PlaybookLoader
from converge_automation.types import ImportTasks, ResourceKind, TaskSpec


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text).strip() + "\n")
    return path


def build_role(base: Path) -> None:
    role = base / "roles" / "webserver"
    write(
        role / "tasks" / "main.toml",
        """
        [[tasks]]
        name = "install nginx"
        package = { name = "nginx" }

        [[tasks]]
        name = "configure nginx"
        notify = "restart nginx"
        template = { src = "nginx.conf.j2", dest = "/etc/nginx/nginx.conf" }

        [[tasks]]
        import_tasks = "firewall.toml"
        """,
    )
    write(
        role / "tasks" / "firewall.toml",
        """
        [[tasks]]
        firewall = { port = "{{ http_port }}", proto = "tcp" }
        """,
    )
    write(
        role / "handlers" / "main.toml",
        """
        [[handlers]]
        name = "restart nginx"
        service = { name = "nginx", state = "restarted" }
        """,
    )
    write(role / "defaults" / "main.toml", "worker_connections = 768")


def test_loads_plays_and_roles(tmp_path: Path) -> None:
    build_role(tmp_path)
    path = write(
        tmp_path / "site.toml",
        """
        [[plays]]
        name = "web tier"
        hosts = "webservers"
        become = true
        roles = ["webserver"]

          [[plays.tasks]]
          name = "motd"
          become_user = "root"
          file = { path = "/etc/motd", content = "managed" }
        """,
    )

    playbook = PlaybookLoader().load(path)

    play = playbook.plays[0]
    assert play.name == "web tier"
    assert play.become is True
    assert play.tasks[0].become_user == "root"

    role = playbook.roles["webserver"]
    assert [type(entry) for entry in role.tasks] == [TaskSpec, TaskSpec, ImportTasks]
    assert role.tasks[1].notify == ["restart nginx"]
    assert role.tasks[1].kind is ResourceKind.TEMPLATE
    assert role.tasks[1].params["_role_dir"] == str(tmp_path / "roles" / "webserver")
    assert role.task_files["firewall.toml"][0].name == "firewall {{ http_port }}"
    assert role.handlers[0].name == "restart nginx"
    assert role.defaults == {"worker_connections": 768}


def test_unknown_resource_kind_is_rejected(tmp_path: Path) -> None:
    path = write(
        tmp_path / "site.toml",
        """
        [[plays]]
        hosts = "all"

          [[plays.tasks]]
          name = "bad"
          docker_container = { name = "web" }
        """,
    )

    with pytest.raises(ValueError, match="unknown resource kind 'docker_container'"):
        PlaybookLoader().load(path)


def test_task_with_two_kinds_is_rejected(tmp_path: Path) -> None:
    path = write(
        tmp_path / "site.toml",
        """
        [[plays]]
        hosts = "all"

          [[plays.tasks]]
          package = { name = "nginx" }
          service = { name = "nginx" }
        """,
    )

    with pytest.raises(ValueError, match="exactly one resource kind"):
        PlaybookLoader().load(path)


def test_missing_role_is_rejected(tmp_path: Path) -> None:
    path = write(tmp_path / "site.toml", '[[plays]]\nhosts = "all"\nroles = ["ghost"]')

    with pytest.raises(ValueError, match="role 'ghost' not found"):
        PlaybookLoader().load(path)


def test_play_level_import_tasks(tmp_path: Path) -> None:
    write(
        tmp_path / "tasks" / "common.toml",
        """
        [[tasks]]
        user = { name = "deploy" }
        """,
    )
    path = write(
        tmp_path / "site.toml",
        """
        [[plays]]
        hosts = "all"

          [[plays.tasks]]
          import_tasks = "tasks/common.toml"
        """,
    )

    playbook = PlaybookLoader().load(path)

    assert playbook.task_files["tasks/common.toml"][0].kind is ResourceKind.USER


def test_handlers_cannot_notify(tmp_path: Path) -> None:
    path = write(
        tmp_path / "site.toml",
        """
        [[plays]]
        hosts = "all"

          [[plays.handlers]]
          name = "restart"
          notify = "other"
          service = { name = "nginx", state = "restarted" }
        """,
    )

    with pytest.raises(ValueError, match="cannot notify"):
        PlaybookLoader().load(path)


def test_playbook_requires_plays(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        PlaybookLoader().load(write(tmp_path / "site.toml", 'title = "empty"'))
