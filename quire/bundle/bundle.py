"""An opened prompt bundle: manifests plus documents."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional
import structlog

from quire.bundle.manifest import (
    MANIFEST_DIR,
    MARKETPLACE_MANIFEST,
    PLUGIN_MANIFEST,
    MarketplaceManifest,
    PluginManifest,
    load_marketplace_manifest,
    load_plugin_manifest,
)
from quire.documents.loader import DocumentLoader
from quire.documents.models import Document, DocumentKind
from quire.errors import BundleNotFoundError, ManifestError

log = structlog.get_logger()


@dataclass
class Bundle:
    """A bundle directory loaded into memory.

    Manifest failures are kept on ``plugin_error`` / ``marketplace_error``
    instead of being raised, so a bundle with a broken manifest can still be
    listed and linted.

    Attributes:
        root: Resolved bundle root
        plugin: Parsed plugin.json (None if absent or invalid)
        marketplace: Parsed marketplace.json (None if absent or invalid)
        documents: Every Markdown document discovered under the root
        plugin_error: Load error for plugin.json
        marketplace_error: Load error for marketplace.json
    """

    root: Path
    plugin: Optional[PluginManifest] = None
    marketplace: Optional[MarketplaceManifest] = None
    documents: list[Document] = field(default_factory=list)
    plugin_error: Optional[str] = None
    marketplace_error: Optional[str] = None

    @classmethod
    def open(cls, root: Path, ignore: Iterable[str] = ()) -> "Bundle":
        """Load a bundle from disk.

        Args:
            root: Bundle root directory
            ignore: Glob patterns to skip during document discovery

        Returns:
            Bundle

        Raises:
            BundleNotFoundError: If root is not a directory
        """
        root = Path(root).expanduser().resolve()
        if not root.is_dir():
            raise BundleNotFoundError(f"Bundle directory not found: {root}")

        bundle = cls(root=root)

        plugin_path = bundle.plugin_manifest_path
        if plugin_path.exists():
            try:
                bundle.plugin = load_plugin_manifest(plugin_path)
            except ManifestError as e:
                log.warning("manifest_load_failed", path=str(plugin_path), error=str(e))
                bundle.plugin_error = str(e)

        marketplace_path = bundle.marketplace_manifest_path
        if marketplace_path.exists():
            try:
                bundle.marketplace = load_marketplace_manifest(marketplace_path)
            except ManifestError as e:
                log.warning(
                    "manifest_load_failed", path=str(marketplace_path), error=str(e)
                )
                bundle.marketplace_error = str(e)

        bundle.documents = DocumentLoader(root, ignore=ignore).discover()

        log.info(
            "bundle_opened",
            root=str(root),
            name=bundle.name,
            documents=len(bundle.documents),
        )
        return bundle

    @property
    def plugin_manifest_path(self) -> Path:
        return self.root / MANIFEST_DIR / PLUGIN_MANIFEST

    @property
    def marketplace_manifest_path(self) -> Path:
        return self.root / MANIFEST_DIR / MARKETPLACE_MANIFEST

    @property
    def name(self) -> str:
        """Plugin name, else marketplace name, else the directory name."""
        if self.plugin:
            return self.plugin.name
        if self.marketplace:
            return self.marketplace.name
        return self.root.name

    @property
    def version(self) -> str:
        if self.plugin and self.plugin.version:
            return self.plugin.version
        if self.marketplace and self.marketplace.version:
            return self.marketplace.version
        return ""

    @property
    def description(self) -> str:
        if self.plugin and self.plugin.description:
            return self.plugin.description
        if self.marketplace:
            return self.marketplace.description
        return ""

    def by_kind(self, kind: DocumentKind) -> list[Document]:
        return [d for d in self.documents if d.kind == kind]

    @property
    def agents(self) -> list[Document]:
        return self.by_kind(DocumentKind.AGENT)

    @property
    def commands(self) -> list[Document]:
        return self.by_kind(DocumentKind.COMMAND)

    @property
    def skills(self) -> list[Document]:
        return self.by_kind(DocumentKind.SKILL)

    @property
    def rules(self) -> list[Document]:
        return self.by_kind(DocumentKind.RULE)

    @property
    def meta(self) -> list[Document]:
        return self.by_kind(DocumentKind.META)

    def get(self, name: str, kind: Optional[DocumentKind] = None) -> Optional[Document]:
        """Find a document by name (falls back to relative path).

        Args:
            name: Document name or relative path
            kind: Restrict the lookup to one kind

        Returns:
            First matching Document or None
        """
        candidates = self.documents if kind is None else self.by_kind(kind)
        for doc in candidates:
            if doc.name == name:
                return doc
        for doc in candidates:
            if doc.rel_path == name or doc.rel_path == name.removeprefix("./"):
                return doc
        return None

    def resolve(self, ref_path: str) -> Path:
        """Resolve a manifest path (``./agents/x.md``) against the root."""
        return (self.root / ref_path).resolve()

    def contains(self, path: Path) -> bool:
        """Whether an absolute path lies inside the bundle root."""
        try:
            Path(path).resolve().relative_to(self.root)
            return True
        except ValueError:
            return False

    def stats(self) -> dict:
        """Counts per kind, total words and documents with errors."""
        by_kind = {kind.value: 0 for kind in DocumentKind}
        words = 0
        errors = 0
        for doc in self.documents:
            by_kind[doc.kind.value] += 1
            words += doc.word_count
            if doc.error:
                errors += 1

        return {
            "name": self.name,
            "version": self.version,
            "total": len(self.documents),
            "by_kind": by_kind,
            "words": words,
            "with_errors": errors,
            "has_plugin_manifest": self.plugin is not None,
            "has_marketplace_manifest": self.marketplace is not None,
            "marketplace_plugins": len(self.marketplace.plugins) if self.marketplace else 0,
        }
