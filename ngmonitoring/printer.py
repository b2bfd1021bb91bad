"""Build and version information."""

from __future__ import annotations

import logging
import platform

__all__ = [
    "NGM_BUILD_TS",
    "NGM_GIT_HASH",
    "NGM_GIT_BRANCH",
    "get_ngm_info",
    "print_ngm_info",
]

NGM_BUILD_TS = "None"
NGM_GIT_HASH = "None"
NGM_GIT_BRANCH = "None"

_BUILD_VERSION = platform.python_version()

logger = logging.getLogger(__name__)


def _ngm_fields() -> dict[str, str]:
    return {
        "Git Commit Hash": NGM_GIT_HASH,
        "Git Branch": NGM_GIT_BRANCH,
        "UTC Build Time": NGM_BUILD_TS,
        "Python Version": _BUILD_VERSION,
    }


def get_ngm_info() -> str:
    """Return the version information as multi-line text."""
    return "\n".join(f"{name}: {value}" for name, value in _ngm_fields().items())


def print_ngm_info() -> dict[str, str]:
    """Log the version information and return its fields."""
    info = _ngm_fields()
    logger.info(
        "Welcome to ng-monitoring. %s",
        " ".join(f"{name}={value}" for name, value in info.items()),
    )
    return info