"""rootfsprep modules - Self-contained bricks following the brick philosophy

Each module is a self-contained collaborator of the session startup state machine:
- Asset Preferences: Persist download timestamps and cached manifests
- Asset Repository: Fetch manifests and decide which assets are stale
- Download Manager: Stream downloads on a worker pool
- Download Coordinator: Enqueue asset downloads and move them into place
- Filesystem Operator: Copy assets into, extract and verify filesystems
"""

from . import (
    asset_preferences,
    asset_repository,
    download_coordinator,
    download_manager,
    filesystem_operator,
)

__all__ = [
    "asset_preferences",
    "asset_repository",
    "download_coordinator",
    "download_manager",
    "filesystem_operator",
]
