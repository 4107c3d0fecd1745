from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Optional, Sequence, Union
import logging
import os
import pwd
import shutil
import stat
import subprocess
import tempfile

from .errors import CommandError, ConvergeError, ReconcileError, TransportError
from .types import HostConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionContext:
    """Identity a single task runs under."""

    become: bool = False
    become_user: Optional[str] = None
    become_method: str = "sudo"

    @property
    def user(self) -> Optional[str]:
        if not self.become:
            return None
        return self.become_user or "root"


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class PathInfo(NamedTuple):
    mode: int
    uid: int
    gid: int
    is_dir: bool


class Executor:
    """Base executor abstraction used by operations."""

    def __init__(
        self,
        host: HostConfig,
        *,
        dry_run: bool = False,
        context: Optional[ExecutionContext] = None,
        timeout: Optional[float] = None,
    ):
        self.host = host
        self.dry_run = dry_run
        self.context = context or ExecutionContext()
        self.timeout = timeout

    def for_context(self, context: ExecutionContext) -> "Executor":
        """Return an executor bound to ``context`` for the duration of one task."""

        return type(self)(self.host, dry_run=self.dry_run, context=context, timeout=self.timeout)

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        raise NotImplementedError

    # File primitives -----------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def set_ownership(self, path: Path, *, uid: Optional[int], gid: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def remove_path(self, path: Path) -> bool:
        raise NotImplementedError


class LocalExecutor(Executor):
    """Executor that acts directly on the local host.

    Commands and file primitives both honour the bound ``ExecutionContext``.
    When the context asks for a different user than the one running converge,
    file primitives are carried out through elevated commands (``stat``,
    ``mktemp``, ``tee``, ``mv``) so that the result is owned and permission
    checked as that user. Otherwise they run in-process.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        """Run ``command`` under the bound context, skipping mutations during dry-runs.

        ``input_text`` is fed on stdin and never logged; without it stdin is
        closed so that nothing can wait on a prompt.
        """

        cmd_list = list(command)
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)

        wrapped = self._elevate(cmd_list, env)
        logger.debug("host=%s run=%s", self.host.name, " ".join(wrapped))
        try:
            proc = subprocess.run(
                wrapped,
                input=input_text,
                stdin=subprocess.DEVNULL if input_text is None else None,
                capture_output=True,
                text=True,
                check=False,
                env=exec_env,
                cwd=str(cwd) if cwd is not None else None,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise TransportError(
                f"'{' '.join(cmd_list)}' timed out after {self.timeout}s on {self.host.name}"
            ) from None
        except FileNotFoundError:
            raise ReconcileError(f"{wrapped[0]} not found on PATH", kind="command-not-found") from None
        if check and proc.returncode != 0:
            raise CommandError(cmd_list, proc.returncode, proc.stdout, proc.stderr)
        return CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)

    @property
    def elevated(self) -> bool:
        user = self.context.user
        return user is not None and user != _current_user()

    def _elevate(self, command: list[str], env: Optional[dict[str, str]] = None) -> list[str]:
        if not self.elevated:
            return command
        user = self.context.user
        if self.context.become_method == "sudo":
            prefix = ["sudo", "-n", "-u", user, "--"]
        elif self.context.become_method == "runuser":
            prefix = ["runuser", "-u", user, "--"]
        else:
            raise TransportError(f"Unsupported become method '{self.context.become_method}'")
        # sudo and runuser reset the environment
        if env:
            command = ["env", *(f"{key}={value}" for key, value in sorted(env.items())), *command]
        return [*prefix, *command]

    def read_file(self, path: Path) -> Optional[str]:
        if self.elevated:
            result = self.run(["cat", "--", str(path)], check=False, mutable=False)
            if result.returncode == 0:
                return result.stdout
            if "No such file" in result.stderr:
                return None
            raise CommandError(result.command, result.returncode, result.stdout, result.stderr)
        try:
            return path.read_text()
        except FileNotFoundError:
            return None

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content" if current is not None else "created")
            if not self.dry_run:
                if self.elevated:
                    self._elevated_write(path, content, mode)
                else:
                    self._atomic_write(path, content, mode)

        if mode is not None:
            info = self.stat_path(path)
            existing_mode = info.mode if info else None
            if existing_mode != mode and not (self.dry_run and current != content):
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    self._chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def _atomic_write(self, path: Path, content: str, mode: Optional[int]) -> None:
        existing = self.stat_path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            if mode is not None:
                os.chmod(tmp_name, mode)
            elif existing is not None:
                os.chmod(tmp_name, existing.mode)
            else:
                os.chmod(tmp_name, 0o644)
            if existing is not None:
                created = os.stat(tmp_name)
                if (created.st_uid, created.st_gid) != (existing.uid, existing.gid):
                    os.chown(tmp_name, existing.uid, existing.gid)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _elevated_write(self, path: Path, content: str, mode: Optional[int]) -> None:
        existing = self.stat_path(path)
        self.run(["mkdir", "-p", "--", str(path.parent)])
        tmp_name = self.run(["mktemp", str(path.parent / f".{path.name}.XXXXXX")]).stdout.strip()
        try:
            self.run(["tee", "--", tmp_name], input_text=content)
            if mode is not None:
                self.run(["chmod", f"{mode:04o}", "--", tmp_name])
            elif existing is not None:
                self.run(["chmod", f"{existing.mode:04o}", "--", tmp_name])
            else:
                self.run(["chmod", "0644", "--", tmp_name])
            if existing is not None:
                self.run(["chown", f"{existing.uid}:{existing.gid}", "--", tmp_name])
            self.run(["mv", "-f", "--", tmp_name, str(path)])
        except ConvergeError:
            self.run(["rm", "-f", "--", tmp_name], check=False)
            raise

    def stat_path(self, path: Path) -> Optional[PathInfo]:
        """Mode, owner and type of ``path`` as seen by the bound user, or None if missing."""

        if self.elevated:
            result = self.run(["stat", "-L", "-c", "%a %u %g %F", "--", str(path)], check=False, mutable=False)
            if result.returncode != 0:
                return None
            mode, uid, gid, kind = result.stdout.strip().split(" ", 3)
            return PathInfo(int(mode, 8), int(uid), int(gid), kind == "directory")
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return None
        return PathInfo(stat.S_IMODE(st.st_mode), st.st_uid, st.st_gid, stat.S_ISDIR(st.st_mode))

    def _chmod(self, path: Path, mode: int) -> None:
        if self.elevated:
            self.run(["chmod", f"{mode:04o}", "--", str(path)])
        else:
            os.chmod(path, mode)

    def _mkdir(self, path: Path) -> None:
        if self.elevated:
            self.run(["mkdir", "-p", "--", str(path)])
        else:
            path.mkdir(parents=True, exist_ok=True)

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = False
        reasons: list[str] = []

        info = self.stat_path(path)
        if info is None:
            changed = True
            reasons.append("created")
            if not self.dry_run:
                self._mkdir(path)
        elif not info.is_dir:
            changed = True
            reasons.append("replaced-non-dir")
            if not self.dry_run:
                self.remove_path(path)
                self._mkdir(path)

        if mode is not None:
            current = self.stat_path(path)
            if current is None or current.mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run and current is not None:
                    self._chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def set_ownership(self, path: Path, *, uid: Optional[int], gid: Optional[int]) -> tuple[bool, str]:
        info = self.stat_path(path)
        if info is None:
            if self.dry_run:
                return True, "owner"
            raise ReconcileError(f"{path} does not exist", kind="missing-path")
        reasons: list[str] = []
        if uid is not None and info.uid != uid:
            reasons.append(f"owner->{uid}")
        if gid is not None and info.gid != gid:
            reasons.append(f"group->{gid}")
        if not reasons:
            return False, "noop"
        if not self.dry_run:
            if self.elevated:
                if gid is None:
                    self.run(["chown", str(uid), "--", str(path)])
                else:
                    self.run(["chown", f"{'' if uid is None else uid}:{gid}", "--", str(path)])
            else:
                os.chown(path, -1 if uid is None else uid, -1 if gid is None else gid)
        return True, ", ".join(reasons)

    def remove_path(self, path: Path) -> bool:
        if self.elevated:
            listing = self.run(["ls", "-d", "--", str(path)], check=False, mutable=False)
            if listing.returncode != 0:
                return False
            if not self.dry_run:
                self.run(["rm", "-rf", "--", str(path)])
            return True
        if not path.exists() and not path.is_symlink():
            return False
        if self.dry_run:
            return True
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True


def _current_user() -> str:
    return pwd.getpwuid(os.geteuid()).pw_name


EXECUTORS: dict[str, type[Executor]] = {
    "local": LocalExecutor,
}


def executor_for(
    host: HostConfig, *, dry_run: bool = False, timeout: Optional[float] = None
) -> Executor:
    executor_cls = EXECUTORS.get(host.connection)
    if executor_cls is None:
        raise TransportError(f"Unknown connection type '{host.connection}' for host {host.name}")
    return executor_cls(host, dry_run=dry_run, timeout=timeout)
