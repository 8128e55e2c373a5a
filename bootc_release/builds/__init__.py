"""Build orchestration module.

This module handles:
- Composing container engine build arguments
- Running the build, digest, push, sign and SBOM stages
- Signing and SBOM generation
- Release history records
"""

from bootc_release.builds.models import ReleaseRecord

__all__ = ["ReleaseRecord"]

# Submodules are imported lazily by callers
# Access via bootc_release.builds.service, etc.
