from __future__ import annotations

from pathlib import Path
from typing import Optional
import grp
import pwd

from .base import Operation
from ..errors import ReconcileError
from ..executors import Executor
from ..templating import TemplateRenderer
from ..types import ActionResult, HostConfig


class FileOperation(Operation):
    """Ensure files exist with the requested contents, mode and ownership."""

    action = "file"

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        raw_path = spec.get("path") or spec.get("dest")
        if not raw_path:
            raise ValueError(f"{self.action} operation requires a path")
        self.path = Path(str(raw_path))
        self.state = self.parse_state(
            spec.get("state"), {"present", "absent", "directory"}, "present", self.action
        )
        raw_content = spec.get("content")
        self.content = "" if raw_content is None else str(raw_content)
        self.mode = self._parse_mode(spec.get("mode"))
        self.owner = spec.get("owner")
        self.group = spec.get("group")

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if self.state == "directory":
            changed, detail = executor.ensure_directory(self.path, mode=self.mode)
        elif self.state == "absent":
            removed = executor.remove_path(self.path)
            return ActionResult(
                host=host.name, action=self.action, changed=removed, details="removed" if removed else "noop"
            )
        else:
            content = self.render_content(host)
            changed, detail = executor.write_file(self.path, content=content, mode=self.mode)
        changed, detail = self._apply_ownership(executor, changed, detail)
        return ActionResult(host=host.name, action=self.action, changed=changed, details=detail)

    def render_content(self, host: HostConfig) -> str:
        return self.content

    def _apply_ownership(self, executor: Executor, changed: bool, detail: str) -> tuple[bool, str]:
        uid = self._parse_uid(self.owner)
        gid = self._parse_gid(self.group)
        if uid is None and gid is None:
            return changed, detail
        chown_changed, chown_detail = executor.set_ownership(self.path, uid=uid, gid=gid)
        if chown_changed:
            changed = True
            detail = f"{detail}, {chown_detail}" if detail and detail != "noop" else chown_detail
        return changed, detail

    @staticmethod
    def _parse_mode(value: Optional[object]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return None
        return int(text, 8)

    @staticmethod
    def _parse_uid(value: Optional[object]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if text.isdigit():
            return int(text)
        try:
            return pwd.getpwnam(text).pw_uid
        except KeyError:
            raise ReconcileError(f"unknown user '{text}'", kind="unknown-owner") from None

    @staticmethod
    def _parse_gid(value: Optional[object]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if text.isdigit():
            return int(text)
        try:
            return grp.getgrnam(text).gr_gid
        except KeyError:
            raise ReconcileError(f"unknown group '{text}'", kind="unknown-group") from None


class TemplateOperation(FileOperation):
    """Render a Jinja2 template from the role's ``templates/`` directory to ``dest``."""

    action = "template"
    renderer = TemplateRenderer()

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        raw_src = spec.get("src")
        if not raw_src:
            raise ValueError("template operation requires a src")
        self.src = Path(str(raw_src)).expanduser()
        self.search_dirs = [
            Path(str(spec[key])) / "templates" for key in ("_role_dir", "_playbook_dir") if spec.get(key)
        ]

    def template_path(self) -> Path:
        if self.src.is_absolute():
            return self.src
        for directory in self.search_dirs:
            candidate = directory / self.src
            if candidate.exists():
                return candidate
        if self.search_dirs:
            return self.search_dirs[0] / self.src
        return self.src

    def render_content(self, host: HostConfig) -> str:
        return self.renderer.render_file(self.template_path(), host.variables)
