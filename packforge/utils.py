from __future__ import annotations

import json
import shutil
import subprocess
import time
from pathlib import Path
from typing import Any, Mapping, Sequence

from .models import ExecResult


def run_command(
    command: Sequence[str],
    *,
    env: Mapping[str, str],
    cwd: str | Path | None = None,
) -> ExecResult:
    """Execute an argument vector with an explicit environment and capture its output."""

    if isinstance(command, (str, bytes)):
        raise TypeError("command must be an argument sequence, not a string")
    argv = [str(part) for part in command]
    if not argv:
        raise ValueError("command must not be empty")

    start = time.perf_counter()
    completed = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        env=dict(env),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    result = ExecResult(
        argv=argv,
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
        duration_s=time.perf_counter() - start,
    )
    return result


def tail_lines(text: str, count: int) -> str:
    if count <= 0:
        return ""
    lines = text.rstrip("\n").splitlines()
    return "\n".join(lines[-count:])


def ensure_directory(path: str | Path) -> Path:
    """Create a directory and return its Path object."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def empty_directory(path: str | Path) -> Path:
    """Remove everything below ``path`` while keeping the directory itself."""

    path = ensure_directory(path)
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()
    return path


def dump_json(path: str | Path, payload: Any, *, indent: int = 2) -> None:
    """Write structured JSON to disk with a trailing newline for readability."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=indent, sort_keys=True) + "\n")
