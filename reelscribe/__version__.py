#!/usr/bin/env python3
"""Version information for reelscribe."""

# PEP 440 compliant version for pip/wheel
__version__ = "0.4.0"

# Human-readable version for display
__version_display__ = "0.4.0"

# Version metadata
__version_info__ = {
    "major": 0,
    "minor": 4,
    "patch": 0,
    "release": "",
    "architecture": "router-v2"
}
