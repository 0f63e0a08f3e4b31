"""
Filesystem adapters: stat, copy and file/directory state.

Each adapter compares the current state (content hash, mode, owner,
group) with the desired one and only writes when they differ, so a
second run with no outside change reports ``unchanged``. Writes go to a
temp file in the destination directory and are renamed into place.
"""

from __future__ import annotations

import grp
import hashlib
import logging
import os
import pwd
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Any

from hostplay.adapters.base import Adapter, ExecutionContext
from hostplay.core.errors import AdapterError, FileWriteError
from hostplay.core.models.action import Receipt

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────────────


def parse_mode(value: Any) -> int | None:
    """Accept ``"0644"``, ``"644"``, ``"0o644"`` or an int (already octal).

    YAML reads an unquoted ``0644`` as the octal int 420, but ``644`` as
    decimal 644 (``0o1204``). Ints above ``0o777`` are rejected; special
    bits need a quoted mode such as ``"4755"``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid file mode: {value!r}")
    if isinstance(value, int):
        if not 0 <= value <= 0o777:
            raise ValueError(f"Invalid file mode: {value!r} (quote octal modes, e.g. '0644')")
        return value
    text = str(value).strip().lower().removeprefix("0o")
    try:
        return int(text, 8)
    except ValueError:
        raise ValueError(f"Invalid file mode: {value!r}") from None


def _uid(owner: Any) -> int:
    text = str(owner)
    if text.isdigit():
        return int(text)
    try:
        return pwd.getpwnam(text).pw_uid
    except KeyError:
        raise FileWriteError(f"Unknown user: {text}") from None


def _gid(group: Any) -> int:
    text = str(group)
    if text.isdigit():
        return int(text)
    try:
        return grp.getgrnam(text).gr_gid
    except KeyError:
        raise FileWriteError(f"Unknown group: {text}") from None


def sha256_of(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def apply_attributes(path: Path, params: dict[str, Any]) -> list[str]:
    """Bring mode/owner/group of ``path`` in line with ``params``.

    Returns:
        The attributes that were changed (empty if none).
    """
    changes: list[str] = []
    current = path.stat()

    mode = parse_mode(params.get("mode"))
    if mode is not None and stat.S_IMODE(current.st_mode) != mode:
        try:
            os.chmod(path, mode)
        except OSError as e:
            raise FileWriteError(f"Cannot chmod {path}: {e}") from e
        changes.append(f"mode->{mode:04o}")

    owner = params.get("owner")
    group = params.get("group")
    uid = _uid(owner) if owner not in (None, "") else -1
    gid = _gid(group) if group not in (None, "") else -1
    if (uid != -1 and uid != current.st_uid) or (gid != -1 and gid != current.st_gid):
        try:
            os.chown(path, uid, gid)
        except OSError as e:
            raise FileWriteError(f"Cannot chown {path}: {e}") from e
        if uid != -1 and uid != current.st_uid:
            changes.append(f"owner->{owner}")
        if gid != -1 and gid != current.st_gid:
            changes.append(f"group->{group}")

    return changes


def _validate_attributes(params: dict[str, Any]) -> tuple[bool, str]:
    try:
        parse_mode(params.get("mode"))
    except ValueError as e:
        return False, str(e)
    return True, ""


# ── Stat ─────────────────────────────────────────────────────────


class StatAdapter(Adapter):
    """Report whether a path exists, and its metadata. Never changes anything.

    Action params:
        path (str): Path to inspect (relative to the playbook directory).
        checksum (bool): Include a sha256 of regular files (default: True).

    Registers ``{"stat": {"exists", "path", "isdir", "isreg", "size",
    "mode", "uid", "gid", "checksum"}}``.
    """

    read_only = True

    @property
    def name(self) -> str:
        return "stat"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        if not context.params.get("path"):
            return False, "Missing required param: 'path'"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        target = context.resolve_path(context.params["path"])
        info: dict[str, Any] = {"exists": False, "path": str(target)}

        try:
            st = target.stat()
        except FileNotFoundError:
            st = None
        except OSError as e:
            raise AdapterError(f"Cannot stat {target}: {e}") from e

        if st is not None:
            info.update(
                exists=True,
                isdir=stat.S_ISDIR(st.st_mode),
                isreg=stat.S_ISREG(st.st_mode),
                size=st.st_size,
                mode=f"{stat.S_IMODE(st.st_mode):04o}",
                uid=st.st_uid,
                gid=st.st_gid,
            )
            if info["isreg"] and context.params.get("checksum", True):
                info["checksum"] = sha256_of(target)

        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            output=f"{target} {'exists' if info['exists'] else 'missing'}",
            data={"stat": info},
        )


# ── Copy ─────────────────────────────────────────────────────────


class CopyAdapter(Adapter):
    """Copy a file (or inline content) to a destination path.

    Action params:
        src (str): Source file (relative to the playbook directory).
        content (str): Inline content, instead of ``src``.
        dest (str): Destination path; a directory receives ``src``'s name.
        mode (str | int): e.g. ``"0644"``.
        owner (str): User name or uid.
        group (str): Group name or gid.
    """

    @property
    def name(self) -> str:
        return "copy"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        params = context.params
        if not params.get("dest"):
            return False, "Missing required param: 'dest'"
        has_src = bool(params.get("src"))
        has_content = "content" in params and params["content"] is not None
        if has_src == has_content:
            return False, "Exactly one of 'src' or 'content' is required"
        return _validate_attributes(params)

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        payload, source_name = self._payload(context)

        dest = context.resolve_path(params["dest"])
        if dest.is_dir() and source_name:
            dest = dest / source_name

        checksum = hashlib.sha256(payload).hexdigest()
        changes: list[str] = []

        if not dest.is_file() or sha256_of(dest) != checksum:
            self._write(dest, payload)
            changes.append("content")

        changes.extend(apply_attributes(dest, params))

        changed = bool(changes)
        logger.debug("copy dest=%s changes=%s", dest, changes or "noop")
        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            changed=changed,
            output=", ".join(changes) if changes else "noop",
            data={"dest": str(dest), "checksum": checksum, "size": len(payload)},
        )

    @staticmethod
    def _payload(context: ExecutionContext) -> tuple[bytes, str | None]:
        params = context.params
        if params.get("src"):
            src = context.resolve_path(params["src"])
            if not src.is_file():
                raise AdapterError(f"Source file not found: {src}")
            return src.read_bytes(), src.name
        return str(params["content"]).encode("utf-8"), None

    @staticmethod
    def _write(dest: Path, payload: bytes) -> None:
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=dest.parent, prefix=".hostplay_", suffix=".tmp")
            tmp = Path(tmp_path)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                if dest.exists():
                    shutil.copymode(dest, tmp)
                else:
                    os.chmod(tmp, 0o644)
                os.replace(tmp, dest)
            except Exception:
                tmp.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise FileWriteError(f"Cannot write {dest}: {e}") from e


# ── File / directory state ───────────────────────────────────────


class FileAdapter(Adapter):
    """Ensure a path is a directory, an existing file, or absent.

    Action params:
        path (str): Target path.
        state (str): ``directory`` (default), ``file`` or ``absent``.
        mode, owner, group: As for ``copy``.
    """

    STATES = {"directory", "file", "absent"}

    @property
    def name(self) -> str:
        return "file"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        params = context.params
        if not params.get("path"):
            return False, "Missing required param: 'path'"
        state = params.get("state", "directory")
        if state not in self.STATES:
            return False, f"Unknown state '{state}'. Valid: {', '.join(sorted(self.STATES))}"
        return _validate_attributes(params)

    def execute(self, context: ExecutionContext) -> Receipt:
        params = context.params
        target = context.resolve_path(params["path"])
        state = params.get("state", "directory")
        changes: list[str] = []

        if state == "absent":
            if target.is_dir() and not target.is_symlink():
                self._guard(shutil.rmtree, target)
                changes.append("removed")
            elif target.exists() or target.is_symlink():
                self._guard(target.unlink)
                changes.append("removed")
        elif state == "directory":
            if target.exists() and not target.is_dir():
                raise FileWriteError(f"{target} exists and is not a directory")
            if not target.exists():
                self._guard(target.mkdir, parents=True, exist_ok=True)
                changes.append("created")
            changes.extend(apply_attributes(target, params))
        else:
            if not target.is_file():
                raise FileWriteError(f"{target} does not exist")
            changes.extend(apply_attributes(target, params))

        return Receipt.success(
            adapter=self.name,
            action_id=context.action.id,
            changed=bool(changes),
            output=", ".join(changes) if changes else "noop",
            data={"path": str(target), "state": state},
        )

    @staticmethod
    def _guard(func: Any, *args: Any, **kwargs: Any) -> None:
        try:
            func(*args, **kwargs)
        except OSError as e:
            raise FileWriteError(str(e)) from e
