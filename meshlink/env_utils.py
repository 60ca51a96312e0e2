"""Helpers for preparing runtime environment directories."""

import os
from pathlib import Path

from meshlink.logging_config import ENV_LOG_DIR, LOG_DIR_NAME


RUNTIME_ENV = "MESHLINK_RUNTIME_DIR"
MPL_ENV = "MPLCONFIGDIR"
XDG_CACHE_ENV = "XDG_CACHE_HOME"


def _is_writable(candidate):
    try:
        candidate.mkdir(parents=True, exist_ok=True)
        probe = candidate / ".perm_test"
        with probe.open("wb") as handle:
            handle.write(b"0")
        probe.unlink(missing_ok=True)
    except OSError:
        return False
    return True


def prepare_runtime_dirs():
    """Pick a writable runtime directory and point log/cache env vars at it."""
    candidates = []
    configured = os.environ.get(RUNTIME_ENV)
    if configured:
        candidates.append(Path(configured))
    candidates.append(Path.home() / LOG_DIR_NAME)
    candidates.append(Path.cwd() / LOG_DIR_NAME)

    base = next((candidate for candidate in candidates if _is_writable(candidate)), None)
    if base is None:
        raise PermissionError("Unable to create writable runtime directory")

    os.environ.setdefault(ENV_LOG_DIR, str(base))

    mpl_dir = base / "matplotlib"
    mpl_dir.mkdir(parents=True, exist_ok=True)
    os.environ.setdefault(MPL_ENV, str(mpl_dir))

    cache_dir = base / "cache"
    cache_dir.mkdir(parents=True, exist_ok=True)
    os.environ.setdefault(XDG_CACHE_ENV, str(cache_dir))

    return base
