# telemetry-metrics-sdk/telemetry_metrics_sdk/version.py
"""
Version management for Telemetry Metrics SDK.

This module holds version information and the helpers the CLI uses
to report it.
"""

import sys
from typing import Tuple, Dict, Any

# Current SDK version
__version__ = "0.1.0"

# Version components for programmatic access
VERSION_MAJOR = 0
VERSION_MINOR = 1
VERSION_PATCH = 0
VERSION_PRE_RELEASE = None  # None, "alpha", "beta", "rc"

# Compatibility information
PYTHON_MIN_VERSION = (3, 9)


def get_version() -> str:
    """
    Get the full version string.

    Returns:
        Version string in semver format (e.g., "0.1.0", "0.1.0-alpha")
    """
    version = f"{VERSION_MAJOR}.{VERSION_MINOR}.{VERSION_PATCH}"
    if VERSION_PRE_RELEASE:
        version += f"-{VERSION_PRE_RELEASE}"
    return version


def get_version_info() -> Tuple[int, int, int]:
    """Get version components as a tuple."""
    return (VERSION_MAJOR, VERSION_MINOR, VERSION_PATCH)


def get_python_version_string() -> str:
    """Get current Python version as a string (e.g., "3.11.4")."""
    return f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"


def check_python_compatibility() -> bool:
    """Check if the running interpreter is supported by the SDK."""
    return sys.version_info[:2] >= PYTHON_MIN_VERSION


def get_build_info() -> Dict[str, Any]:
    """
    Get build information for the SDK.

    Returns:
        Dictionary containing version and interpreter metadata
    """
    return {
        "version": get_version(),
        "version_info": get_version_info(),
        "python_version": get_python_version_string(),
        "python_compatible": check_python_compatibility(),
        "min_python": f"{PYTHON_MIN_VERSION[0]}.{PYTHON_MIN_VERSION[1]}",
    }
