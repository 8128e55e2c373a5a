"""bootc-release - Build and release orchestration for OCI-native bootable OS images.

This package drives the container engine, image signer, SBOM scanners and
disk-image conversion tool to build, version, sign, attest and convert
bootable container images, and records the results in a release manifest.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
