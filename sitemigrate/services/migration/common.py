from __future__ import annotations

import json
import os
import re
import secrets
import shutil
import string
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_ID_ALPHABET = string.ascii_letters + string.digits
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def timestamp() -> str:
    return time.strftime("%Y%m%d_%H%M%S", time.gmtime())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_job_id(prefix: str = "") -> str:
    # UTC timestamp + random suffix; sorts by creation time and is safe as a directory name.
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{prefix}{timestamp()}_{suffix}"


def sanitize_id(value: str | None) -> str | None:
    """Return the id if it is safe to use as a single directory name, else None."""
    raw = str(value or "").strip()
    if not raw or raw in (".", "..") or not _SAFE_ID_RE.match(raw):
        return None
    return raw


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def remove_tree(path: Path) -> bool:
    if not path.exists():
        return False
    shutil.rmtree(path, ignore_errors=True)
    return not path.exists()


def unlink_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def write_json_atomic(path: Path, data: Any, *, pretty: bool = True) -> None:
    tmp = path.with_name(path.name + ".tmp")
    text = json.dumps(data, ensure_ascii=False, indent=4 if pretty else None)
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)


def read_json(path: Path) -> dict[str, Any] | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def size_format(num_bytes: int) -> str:
    size = float(max(0, int(num_bytes)))
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def run_cmd(cmd: list[str], *, cwd: Path | None = None, stdin_text: str | None = None) -> tuple[int, str]:
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            input=stdin_text,
            capture_output=True,
            text=True,
            shell=False,
        )
    except OSError as e:
        return 127, str(e)
    out = (proc.stdout or "") + (proc.stderr or "")
    return proc.returncode, out.strip()


def run_cmd_to_file(cmd: list[str], dest: Path) -> tuple[int, str]:
    """Run a command with stdout redirected into `dest`; returns (code, stderr)."""
    try:
        with dest.open("wb") as fh:
            proc = subprocess.run(cmd, stdout=fh, stderr=subprocess.PIPE, shell=False)
    except OSError as e:
        return 127, str(e)
    return proc.returncode, (proc.stderr or b"").decode("utf-8", errors="replace").strip()
