"""Quire - tooling for AI assistant prompt bundles.

Lints, catalogs, scaffolds and installs bundles of agent, skill, command and
rule documents registered through ``.claude-plugin`` manifests.
"""

__version__ = "0.1.0"

from quire.bundle import Bundle
from quire.config import QuireConfig
from quire.lint import BundleValidator, ValidationResult

__all__ = [
    "__version__",
    "Bundle",
    "BundleValidator",
    "QuireConfig",
    "ValidationResult",
]
