"""rootfsprep - Linux root filesystem provisioning for saved sessions

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Never start a session against an incomplete filesystem
- Fail fast with helpful guidance

rootfsprep makes sure the distribution assets a session needs exist locally,
downloads them when missing or stale, extracts the root filesystem and verifies
it before the session is allowed to start.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
