"""
Provides portrelay version information.
"""

# This file is auto-generated! Do not edit!
# Use `python -m incremental.update portrelay` to change this file.

from incremental import Version

__version__ = Version("portrelay", 1, 0, 0)
__all__ = ["__version__"]
