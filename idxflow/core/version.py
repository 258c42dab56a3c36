"""SDK version registration.

Components register their name and version once per process; the set of
registered versions is reported in the User-Agent of outbound requests.
"""

from __future__ import annotations

import platform
import threading

import httpx

__version__ = "0.1.0"

SDK_NAME = "idxflow"

_registered: dict[str, str] = {}
_lock = threading.Lock()


def register_sdk_version(name: str = SDK_NAME, version: str = __version__) -> None:
    """Register an SDK component version. Repeated calls are no-ops."""
    with _lock:
        _registered.setdefault(name, version)


def registered_versions() -> dict[str, str]:
    with _lock:
        return dict(_registered)


def user_agent() -> str:
    """Build the User-Agent header value for outbound requests."""
    parts = [f"{name}/{version}" for name, version in registered_versions().items()]
    parts.append(f"python/{platform.python_version()}")
    parts.append(f"httpx/{httpx.__version__}")
    return " ".join(parts)
