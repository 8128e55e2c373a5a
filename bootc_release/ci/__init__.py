"""CI integration module.

This module handles:
- Detecting the CI environment (pull request, default branch, feature branch)
- Generating image tags and labels from that classification
- Writing step outputs, environment files and annotations
"""

from bootc_release.ci.environment import Environment, LabelConfig, detect

__all__ = ["Environment", "LabelConfig", "detect"]
