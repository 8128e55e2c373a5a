"""Disk image module.

This module handles:
- Converting container images into bootable disk artifacts
- Booting produced disk images in a VM for manual testing
"""

from bootc_release.disk.service import DiskBuilder, DiskOptions

__all__ = ["DiskBuilder", "DiskOptions"]
