"""Integrity checks for prompt bundles."""

from quire.lint.validator import (
    BundleValidator,
    Issue,
    IssueCode,
    ValidationResult,
    find_bundle_root,
    validate_file,
)

__all__ = [
    "BundleValidator",
    "Issue",
    "IssueCode",
    "ValidationResult",
    "find_bundle_root",
    "validate_file",
]
