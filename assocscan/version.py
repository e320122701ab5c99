"""
Centralized version management for assocscan.

This file stores the project version following semantic versioning (MAJOR.MINOR.PATCH).
To update the version, change __version__ below. All other references to the version
throughout the codebase should import it from here.
"""

__version__ = "0.3.0"
