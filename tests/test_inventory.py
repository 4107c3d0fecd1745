from pathlib import Path
import textwrap

import pytest

from converge_automation.inventory import InventoryLoader
from converge_automation.variables import VariableStore


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text).strip() + "\n")
    return path


def test_loads_default_local_host(tmp_path: Path) -> None:
    inventory = InventoryLoader().load(write(tmp_path / "inventory.toml", "[vars]\nowner = 'ops'"))

    assert set(inventory.hosts) == {"localhost"}
    assert inventory.variables == {"owner": "ops"}


def test_loads_hosts_groups_and_vars_files(tmp_path: Path) -> None:
    path = write(
        tmp_path / "inventory.toml",
        """
        [vars]
        admin_user = "deploy"

        [hosts."web1.example.com"]
        connection = "local"
        vars = { http_port = 8443 }

        [groups.webservers]
        hosts = ["web1.example.com", "web2.example.com"]
        vars = { http_port = 8080 }

        [groups.all]
        vars = { ntp_server = "time.example.com" }
        """,
    )
    write(tmp_path / "group_vars" / "webservers.toml", 'server_name = "www.example.com"')
    write(tmp_path / "host_vars" / "web2.example.com.toml", "http_port = 9090")

    inventory = InventoryLoader().load(path)

    assert list(inventory.hosts) == ["web1.example.com", "web2.example.com"]
    assert inventory.hosts["web2.example.com"].groups == ["webservers"]
    assert inventory.variables["ntp_server"] == "time.example.com"
    assert "all" not in inventory.groups

    store = VariableStore(inventory)
    web1 = store.variables_for(inventory.hosts["web1.example.com"])
    web2 = store.variables_for(inventory.hosts["web2.example.com"])
    assert web1["http_port"] == 8443
    assert web2["http_port"] == 9090
    assert web1["server_name"] == "www.example.com"
    assert web2["admin_user"] == "deploy"


def test_select_by_group_host_and_all(tmp_path: Path) -> None:
    path = write(
        tmp_path / "inventory.toml",
        """
        [groups.webservers]
        hosts = ["web1", "web2"]

        [groups.dbservers]
        hosts = ["db1"]
        """,
    )
    inventory = InventoryLoader().load(path)

    assert [h.name for h in inventory.select("webservers")] == ["web1", "web2"]
    assert [h.name for h in inventory.select(["db1", "webservers", "web1"])] == ["db1", "web1", "web2"]
    assert [h.name for h in inventory.select("all")] == ["web1", "web2", "db1"]
    with pytest.raises(KeyError):
        inventory.select("mailservers")


def test_invalid_toml_reports_location(tmp_path: Path) -> None:
    path = write(tmp_path / "inventory.toml", "[hosts\nweb1 = 1")

    with pytest.raises(ValueError, match="inventory.toml"):
        InventoryLoader().load(path)


def test_missing_inventory_file(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="file not found"):
        InventoryLoader().load(tmp_path / "absent.toml")


def test_group_vars_must_be_table(tmp_path: Path) -> None:
    path = write(tmp_path / "inventory.toml", '[groups.web]\nhosts = ["a"]\nvars = "nope"')

    with pytest.raises(ValueError, match="must be a table"):
        InventoryLoader().load(path)


def test_local_host_rejects_remote_address(tmp_path: Path) -> None:
    path = write(
        tmp_path / "inventory.toml",
        """
        [hosts.web1]
        address = "192.0.2.10"
        """,
    )

    with pytest.raises(ValueError, match="web1 has address '192.0.2.10'"):
        InventoryLoader().load(path)


def test_local_host_accepts_loopback_address(tmp_path: Path) -> None:
    path = write(tmp_path / "inventory.toml", '[hosts.box]\naddress = "127.0.0.1"\n')

    assert InventoryLoader().load(path).hosts["box"].address == "127.0.0.1"
