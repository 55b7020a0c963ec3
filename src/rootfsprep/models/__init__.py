"""
rootfsprep Data Models

Shared dataclasses and data structures to avoid circular dependencies.

Philosophy:
- Zero dependencies on other rootfsprep modules
- Self-contained data definitions
- Shared types used across multiple modules
"""

from .entities import DOWNLOAD_MARKER, SERVICE_TYPES, Asset, DownloadHandle, Filesystem, Session

__all__ = ["DOWNLOAD_MARKER", "SERVICE_TYPES", "Asset", "DownloadHandle", "Filesystem", "Session"]
