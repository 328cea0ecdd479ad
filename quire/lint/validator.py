"""Bundle validation for Quire.

Checks a bundle's manifests and documents for integrity problems before it
is published or installed.
"""

import re
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import unquote
import structlog

from quire.bundle.bundle import Bundle
from quire.bundle.manifest import (
    MANIFEST_DIR,
    PLUGIN_MANIFEST,
    load_plugin_manifest,
)
from quire.config import DEFAULT_MODELS, DEFAULT_TOOLS
from quire.documents.loader import KIND_DIRS, DocumentLoader
from quire.documents.models import FENCE_PATTERN, Document, DocumentKind
from quire.errors import ManifestError

log = structlog.get_logger()

KEBAB_CASE = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
SEMVER = re.compile(
    r"^\d+\.\d+\.\d+(-[0-9A-Za-z.-]+)?(\+[0-9A-Za-z.-]+)?$"
)
MARKDOWN_LINK = re.compile(r"!?\[[^\]]*\]\(\s*<?([^)\s>]+)>?(?:\s+[\"'][^\"']*[\"'])?\s*\)")
INLINE_CODE = re.compile(r"`[^`]*`")
EXTERNAL_LINK = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


class IssueCode(Enum):
    """Types of validation issues."""
    MISSING_MANIFEST = auto()       # No plugin.json or marketplace.json
    INVALID_MANIFEST = auto()       # Manifest failed to load
    MISSING_FILE = auto()           # Registered path does not exist
    PATH_ESCAPE = auto()            # Registered path outside the bundle
    INVALID_FRONTMATTER = auto()    # Frontmatter is not a YAML mapping
    MISSING_REQUIRED = auto()       # Required frontmatter field missing
    DUPLICATE_NAME = auto()         # Two documents of one kind share a name
    INVALID_NAME = auto()           # Name is not kebab-case
    INVALID_VERSION = auto()        # Version is not semver shaped
    UNKNOWN_MODEL = auto()          # Agent model not recognised
    UNKNOWN_TOOL = auto()           # Agent tool not recognised
    EMPTY_BODY = auto()             # Document has no prompt text
    UNREGISTERED = auto()           # Document missing from plugin.json
    SOURCE_MISSING = auto()         # Marketplace source path missing
    DUPLICATE_PLUGIN = auto()       # Two marketplace entries share a name
    VERSION_MISMATCH = auto()       # Marketplace and plugin.json disagree
    BROKEN_LINK = auto()            # Relative Markdown link target missing


@dataclass
class Issue:
    """A single validation finding.

    Attributes:
        code: Issue type
        message: Human readable description
        path: Bundle-relative path the issue refers to (if any)
    """
    code: IssueCode
    message: str
    path: Optional[str] = None

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message

    def to_dict(self) -> dict:
        return {"code": self.code.name, "message": self.message, "path": self.path}


@dataclass
class ValidationResult:
    """Result of bundle validation.

    Attributes:
        valid: Whether the bundle is valid
        errors: List of validation errors
        warnings: List of validation warnings
        info: Additional info messages
    """
    valid: bool = True
    errors: list[Issue] = field(default_factory=list)
    warnings: list[Issue] = field(default_factory=list)
    info: list[str] = field(default_factory=list)

    def add_error(self, code: IssueCode, message: str, path: Optional[str] = None) -> None:
        """Add a validation error."""
        self.errors.append(Issue(code, message, path))
        self.valid = False

    def add_warning(self, code: IssueCode, message: str, path: Optional[str] = None) -> None:
        """Add a validation warning."""
        self.warnings.append(Issue(code, message, path))

    def add_info(self, message: str) -> None:
        """Add an info message."""
        self.info.append(message)

    def codes(self) -> set[IssueCode]:
        """All issue codes raised, errors and warnings together."""
        return {i.code for i in self.errors} | {i.code for i in self.warnings}

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
            "info": list(self.info),
        }


class BundleValidator:
    """Validates a prompt bundle for integrity and correctness.

    Performs several validation checks:
    1. Manifest presence and parsing
    2. Registered paths exist and stay inside the bundle
    3. Frontmatter parses and carries the required fields
    4. Names are unique per document kind and kebab-case
    5. Agent models and tools are recognised
    6. Marketplace entries point at real plugins
    7. Relative Markdown links resolve

    Example:
        validator = BundleValidator(strict=True)
        result = validator.validate(Bundle.open(Path(".")))
        if not result.valid:
            for issue in result.errors:
                print(f"Error: {issue}")
    """

    def __init__(
        self,
        known_models: Optional[Iterable[str]] = None,
        known_tools: Optional[Iterable[str]] = None,
        check_links: bool = True,
        strict: bool = False
    ):
        """Initialize the validator.

        Args:
            known_models: Model names accepted in agent frontmatter
            known_tools: Tool names accepted in agent frontmatter
            check_links: Whether to check relative Markdown links
            strict: If True, treat warnings as errors
        """
        self.known_models = set(known_models if known_models is not None else DEFAULT_MODELS)
        self.known_tools = set(known_tools if known_tools is not None else DEFAULT_TOOLS)
        self.check_links = check_links
        self.strict = strict

    def validate(self, bundle: Bundle) -> ValidationResult:
        """Validate a bundle.

        Args:
            bundle: Opened bundle

        Returns:
            ValidationResult with errors, warnings, and info
        """
        result = ValidationResult(valid=True)

        self._check_manifests(bundle, result)
        if bundle.plugin:
            self._check_registrations(bundle, result)
        if bundle.marketplace:
            self._check_marketplace(bundle, result)

        for doc in bundle.documents:
            self.validate_document(doc, result, root=bundle.root)

        self._check_duplicates(bundle.documents, result)

        result.add_info(
            f"Checked {len(bundle.documents)} documents in bundle '{bundle.name}'"
        )

        self._apply_strict(result)

        log.info(
            "bundle_validated",
            name=bundle.name,
            valid=result.valid,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    def validate_document(
        self,
        doc: Document,
        result: ValidationResult,
        root: Optional[Path] = None,
    ) -> None:
        """Run per-document checks.

        Args:
            doc: Document to check
            result: ValidationResult to populate
            root: Bundle root, used to keep link checks inside the bundle
        """
        if doc.error:
            result.add_error(IssueCode.INVALID_FRONTMATTER, doc.error, doc.rel_path)
            return

        if doc.kind == DocumentKind.AGENT:
            self._validate_agent(doc, result)
        elif doc.kind == DocumentKind.SKILL:
            self._validate_skill(doc, result)

        if doc.kind != DocumentKind.META:
            if doc.is_empty:
                result.add_warning(
                    IssueCode.EMPTY_BODY,
                    f"{doc.kind.value} '{doc.name}' has no body text",
                    doc.rel_path,
                )
            if not KEBAB_CASE.match(doc.name):
                result.add_warning(
                    IssueCode.INVALID_NAME,
                    f"Name '{doc.name}' is not kebab-case",
                    doc.rel_path,
                )

        if self.check_links:
            self._check_links(doc, result, root)

    def _check_manifests(self, bundle: Bundle, result: ValidationResult) -> None:
        """Check manifest presence, parsing, names and versions."""
        if bundle.plugin_error:
            result.add_error(
                IssueCode.INVALID_MANIFEST, bundle.plugin_error, self._rel(bundle, bundle.plugin_manifest_path)
            )
        if bundle.marketplace_error:
            result.add_error(
                IssueCode.INVALID_MANIFEST,
                bundle.marketplace_error,
                self._rel(bundle, bundle.marketplace_manifest_path),
            )

        if (
            not bundle.plugin_manifest_path.exists()
            and not bundle.marketplace_manifest_path.exists()
        ):
            result.add_error(
                IssueCode.MISSING_MANIFEST,
                f"No {MANIFEST_DIR}/{PLUGIN_MANIFEST} or marketplace.json found",
            )
            return

        if bundle.plugin:
            path = self._rel(bundle, bundle.plugin_manifest_path)
            if not KEBAB_CASE.match(bundle.plugin.name):
                result.add_error(
                    IssueCode.INVALID_NAME,
                    f"Plugin name '{bundle.plugin.name}' must be kebab-case",
                    path,
                )
            if bundle.plugin.version and not SEMVER.match(bundle.plugin.version):
                result.add_warning(
                    IssueCode.INVALID_VERSION,
                    f"Version '{bundle.plugin.version}' is not a semantic version",
                    path,
                )
            if not bundle.plugin.description:
                result.add_info("plugin.json has no description")

        if bundle.marketplace:
            path = self._rel(bundle, bundle.marketplace_manifest_path)
            if not KEBAB_CASE.match(bundle.marketplace.name):
                result.add_error(
                    IssueCode.INVALID_NAME,
                    f"Marketplace name '{bundle.marketplace.name}' must be kebab-case",
                    path,
                )
            if bundle.marketplace.version and not SEMVER.match(bundle.marketplace.version):
                result.add_warning(
                    IssueCode.INVALID_VERSION,
                    f"Version '{bundle.marketplace.version}' is not a semantic version",
                    path,
                )

    def _check_registrations(self, bundle: Bundle, result: ValidationResult) -> None:
        """Every path in plugin.json must exist inside the bundle."""
        manifest_path = self._rel(bundle, bundle.plugin_manifest_path)

        for field_name, refs in bundle.plugin.registered_paths().items():
            for ref in refs:
                target = bundle.resolve(ref)
                if not bundle.contains(target):
                    result.add_error(
                        IssueCode.PATH_ESCAPE,
                        f"{field_name} entry '{ref}' points outside the bundle",
                        manifest_path,
                    )
                elif not target.exists():
                    result.add_error(
                        IssueCode.MISSING_FILE,
                        f"{field_name} entry '{ref}' does not exist",
                        manifest_path,
                    )

        # Files sitting in agents/ or commands/ but missing from an explicit list
        for field_name, kind in (("agents", DocumentKind.AGENT), ("commands", DocumentKind.COMMAND)):
            refs = getattr(bundle.plugin, field_name)
            if not refs:
                continue
            registered = {bundle.resolve(ref) for ref in refs}
            for doc in bundle.by_kind(kind):
                if doc.rel_path.split("/")[0] != field_name:
                    continue
                if doc.path in registered:
                    continue
                # A registered directory covers everything below it
                if any(r.is_dir() and doc.path.is_relative_to(r) for r in registered):
                    continue
                result.add_warning(
                    IssueCode.UNREGISTERED,
                    f"{kind.value} '{doc.name}' is not listed in plugin.json {field_name}",
                    doc.rel_path,
                )

    def _check_marketplace(self, bundle: Bundle, result: ValidationResult) -> None:
        """Check marketplace entries for duplicates and dangling sources."""
        manifest_path = self._rel(bundle, bundle.marketplace_manifest_path)
        seen: set[str] = set()

        for entry in bundle.marketplace.plugins:
            if entry.name in seen:
                result.add_error(
                    IssueCode.DUPLICATE_PLUGIN,
                    f"Plugin '{entry.name}' is listed more than once",
                    manifest_path,
                )
            seen.add(entry.name)

            if not KEBAB_CASE.match(entry.name):
                result.add_error(
                    IssueCode.INVALID_NAME,
                    f"Marketplace plugin name '{entry.name}' must be kebab-case",
                    manifest_path,
                )

            if not entry.is_local:
                continue

            source = entry.local_path(bundle.root)
            if not bundle.contains(source):
                result.add_error(
                    IssueCode.PATH_ESCAPE,
                    f"Plugin '{entry.name}' source '{entry.source}' points outside the bundle",
                    manifest_path,
                )
                continue
            if not source.exists():
                result.add_error(
                    IssueCode.SOURCE_MISSING,
                    f"Plugin '{entry.name}' source '{entry.source}' does not exist",
                    manifest_path,
                )
                continue

            if not entry.version:
                continue
            plugin_version = self._source_version(bundle, source)
            if plugin_version and plugin_version != entry.version:
                result.add_warning(
                    IssueCode.VERSION_MISMATCH,
                    f"Plugin '{entry.name}' is {entry.version} in marketplace.json "
                    f"but {plugin_version} in its plugin.json",
                    manifest_path,
                )

    def _source_version(self, bundle: Bundle, source: Path) -> Optional[str]:
        if source == bundle.root:
            return bundle.plugin.version if bundle.plugin else None
        manifest = source / MANIFEST_DIR / PLUGIN_MANIFEST
        if not manifest.exists():
            return None
        try:
            return load_plugin_manifest(manifest).version or None
        except ManifestError as e:
            log.debug("source_manifest_unreadable", path=str(manifest), error=str(e))
            return None

    def _validate_agent(self, doc: Document, result: ValidationResult) -> None:
        """Validate an agent document's frontmatter."""
        if not doc.has_frontmatter:
            result.add_error(
                IssueCode.MISSING_REQUIRED,
                "Agent has no frontmatter (name and description are required)",
                doc.rel_path,
            )
            return

        for required in ("name", "description"):
            value = doc.meta.get(required)
            if not value or not str(value).strip():
                result.add_error(
                    IssueCode.MISSING_REQUIRED,
                    f"Agent frontmatter is missing '{required}'",
                    doc.rel_path,
                )

        model = doc.model
        if model and model not in self.known_models and not model.startswith("claude-"):
            result.add_warning(
                IssueCode.UNKNOWN_MODEL,
                f"Model '{model}' is not one of: {', '.join(sorted(self.known_models))}",
                doc.rel_path,
            )

        for tool in doc.tools:
            if tool in self.known_tools or tool == "*" or tool.startswith("mcp__"):
                continue
            # Bash(git:*) style permission scoping
            if "(" in tool and tool.split("(", 1)[0] in self.known_tools:
                continue
            result.add_warning(
                IssueCode.UNKNOWN_TOOL,
                f"Tool '{tool}' is not a known tool",
                doc.rel_path,
            )

    def _validate_skill(self, doc: Document, result: ValidationResult) -> None:
        """Skills are selected by description, so one is required."""
        if not doc.description:
            result.add_error(
                IssueCode.MISSING_REQUIRED,
                "Skill frontmatter is missing 'description'",
                doc.rel_path,
            )

    def _check_duplicates(self, documents: list[Document], result: ValidationResult) -> None:
        """Names must be unique per kind within one plugin."""
        seen: dict[tuple, Document] = {}
        for doc in documents:
            if doc.kind == DocumentKind.META or doc.error:
                continue
            key = (self._scope(doc), doc.kind, doc.name)
            first = seen.get(key)
            if first is None:
                seen[key] = doc
                continue
            result.add_error(
                IssueCode.DUPLICATE_NAME,
                f"{doc.kind.value} name '{doc.name}' is already used by {first.rel_path}",
                doc.rel_path,
            )

    def _scope(self, doc: Document) -> str:
        """Path prefix before the kind directory (nested plugins)."""
        parts = doc.rel_path.split("/")
        for i, part in enumerate(parts[:-1]):
            if part in KIND_DIRS:
                return "/".join(parts[:i])
        return ""

    def _check_links(
        self,
        doc: Document,
        result: ValidationResult,
        root: Optional[Path],
    ) -> None:
        """Relative Markdown links must point at existing files."""
        in_fence = False
        for line in doc.body.split("\n"):
            if FENCE_PATTERN.match(line):
                in_fence = not in_fence
                continue
            if in_fence:
                continue

            for match in MARKDOWN_LINK.finditer(INLINE_CODE.sub("", line)):
                target = match.group(1)
                if target.startswith("#") or EXTERNAL_LINK.match(target):
                    continue
                target = unquote(target.split("#", 1)[0].split("?", 1)[0])
                if not target:
                    continue

                if target.startswith("/"):
                    if root is None:
                        continue
                    resolved = (root / target.lstrip("/")).resolve()
                else:
                    resolved = (doc.path.parent / target).resolve()

                if not resolved.exists():
                    result.add_warning(
                        IssueCode.BROKEN_LINK,
                        f"Link target '{match.group(1)}' does not exist",
                        doc.rel_path,
                    )

    def _apply_strict(self, result: ValidationResult) -> None:
        """In strict mode, warnings become errors."""
        if self.strict and result.warnings:
            for warning in result.warnings:
                result.add_error(warning.code, warning.message, warning.path)
            result.warnings = []

    def _rel(self, bundle: Bundle, path: Path) -> str:
        return path.relative_to(bundle.root).as_posix()


def find_bundle_root(path: Path) -> Path:
    """Nearest ancestor holding a ``.claude-plugin`` directory.

    Falls back to the parent of the kind directory (``agents``, ``skills``,
    ...) the file lives in, then to the file's own directory.
    """
    path = Path(path).resolve()
    for parent in path.parents:
        if (parent / MANIFEST_DIR).is_dir():
            return parent
    for parent in path.parents:
        if parent.name in KIND_DIRS:
            return parent.parent
    return path.parent


def validate_file(path: Path, **kwargs) -> ValidationResult:
    """Convenience function to validate a single Markdown document.

    Args:
        path: Path to the document
        **kwargs: Arguments passed to BundleValidator

    Returns:
        ValidationResult
    """
    path = Path(path)
    if not path.is_file():
        result = ValidationResult(valid=False)
        result.add_error(IssueCode.MISSING_FILE, f"File not found: {path}")
        return result

    root = find_bundle_root(path)
    doc = DocumentLoader(root).load_file(path)

    validator = BundleValidator(**kwargs)
    result = ValidationResult(valid=True)
    validator.validate_document(doc, result, root=root)
    result.add_info(f"Checked {doc.kind.value} '{doc.name}'")
    validator._apply_strict(result)
    return result
