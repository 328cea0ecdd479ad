"""Local index of installed bundles.

Maintains a registry of installed bundles, where they came from and which
files they put into the assistant's config directory, so they can be
updated and removed cleanly.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional
import json
import structlog

log = structlog.get_logger()

INDEX_VERSION = 1


class SourceType(str, Enum):
    """Types of bundle sources for installation."""

    LOCAL = "local"          # Local directory
    GIT = "git"              # Git repository URL


@dataclass
class BundleSource:
    """Information about where a bundle was installed from.

    Attributes:
        type: Type of source (local, git)
        location: Source location (path or git URL)
        ref: Git ref (branch, tag, commit) if applicable
        plugin: Marketplace entry picked from the source, if any
        installed_at: When the bundle was installed
        updated_at: When the bundle was last updated
    """
    type: SourceType
    location: str
    ref: Optional[str] = None
    plugin: Optional[str] = None
    installed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type.value,
            "location": self.location,
            "ref": self.ref,
            "plugin": self.plugin,
            "installed_at": self.installed_at.isoformat() if self.installed_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BundleSource":
        """Create from dictionary."""
        return cls(
            type=SourceType(data["type"]),
            location=data["location"],
            ref=data.get("ref"),
            plugin=data.get("plugin"),
            installed_at=datetime.fromisoformat(data["installed_at"]) if data.get("installed_at") else None,
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else None,
        )


@dataclass
class InstalledBundle:
    """Record of an installed bundle.

    Attributes:
        name: Bundle name
        version: Bundle version at install time
        description: Bundle description
        source: Where the bundle was installed from
        install_dir: Config directory the files were copied into
        files: Absolute paths of every installed file
        documents: Installed document names keyed by kind
        pinned: If True, don't update this bundle
    """

    name: str
    source: BundleSource
    install_dir: Path
    version: str = ""
    description: str = ""
    files: list[str] = field(default_factory=list)
    documents: dict[str, list[str]] = field(default_factory=dict)
    pinned: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "source": self.source.to_dict(),
            "install_dir": str(self.install_dir),
            "files": list(self.files),
            "documents": {k: list(v) for k, v in self.documents.items()},
            "pinned": self.pinned,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InstalledBundle":
        """Create from dictionary."""
        return cls(
            name=data["name"],
            version=data.get("version", ""),
            description=data.get("description", ""),
            source=BundleSource.from_dict(data["source"]),
            install_dir=Path(data["install_dir"]),
            files=list(data.get("files", [])),
            documents={k: list(v) for k, v in data.get("documents", {}).items()},
            pinned=data.get("pinned", False),
        )


class InstallIndex:
    """Manages the local index of installed bundles.

    The index is stored as a JSON file at ~/.quire/index.json.

    Example:
        index = InstallIndex()
        index.load()

        index.add(InstalledBundle(name="apec", source=source, install_dir=dest))
        bundle = index.get("apec")

        index.save()
    """

    def __init__(self, index_dir: Optional[Path] = None):
        """Initialize the install index.

        Args:
            index_dir: Directory for index file. Defaults to ~/.quire/
        """
        self.index_dir = Path(index_dir) if index_dir else (Path.home() / ".quire")
        self.index_file = self.index_dir / "index.json"
        self._bundles: dict[str, InstalledBundle] = {}
        self._loaded = False

    def load(self) -> None:
        """Load the index from disk."""
        if not self.index_file.exists():
            self._bundles = {}
            self._loaded = True
            return

        try:
            with open(self.index_file, "r") as f:
                data = json.load(f)

            self._bundles = {}
            for name, bundle_data in data.get("bundles", {}).items():
                try:
                    self._bundles[name] = InstalledBundle.from_dict(bundle_data)
                except (KeyError, ValueError, TypeError) as e:
                    log.warning("install_index_entry_invalid", name=name, error=str(e))

            self._loaded = True
            log.debug("install_index_loaded", count=len(self._bundles))

        except (json.JSONDecodeError, OSError, AttributeError) as e:
            log.error("install_index_load_failed", error=str(e))
            self._bundles = {}
            self._loaded = True

    def save(self) -> None:
        """Save the index to disk."""
        self.index_dir.mkdir(parents=True, exist_ok=True)

        data = {
            "version": INDEX_VERSION,
            "updated_at": datetime.now().isoformat(),
            "bundles": {
                name: bundle.to_dict() for name, bundle in self._bundles.items()
            },
        }

        try:
            with open(self.index_file, "w") as f:
                json.dump(data, f, indent=2)
            log.debug("install_index_saved", count=len(self._bundles))
        except OSError as e:
            log.error("install_index_save_failed", error=str(e))
            raise

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def add(self, bundle: InstalledBundle) -> None:
        """Add or update a bundle in the index."""
        self._ensure_loaded()
        self._bundles[bundle.name] = bundle
        log.info("install_index_bundle_added", name=bundle.name, version=bundle.version)

    def remove(self, name: str) -> Optional[InstalledBundle]:
        """Remove a bundle from the index.

        Returns:
            Removed bundle or None if not found
        """
        self._ensure_loaded()
        bundle = self._bundles.pop(name, None)
        if bundle:
            log.info("install_index_bundle_removed", name=name)
        return bundle

    def get(self, name: str) -> Optional[InstalledBundle]:
        self._ensure_loaded()
        return self._bundles.get(name)

    def get_all(self) -> list[InstalledBundle]:
        self._ensure_loaded()
        return list(self._bundles.values())

    def exists(self, name: str) -> bool:
        self._ensure_loaded()
        return name in self._bundles

    def owner_of(self, path: Path) -> Optional[str]:
        """Name of the bundle that installed a file, if any."""
        self._ensure_loaded()
        target = str(Path(path).resolve())
        for bundle in self._bundles.values():
            if target in bundle.files:
                return bundle.name
        return None

    def get_outdated(self) -> list[tuple[InstalledBundle, str]]:
        """Get bundles that may have updates available.

        Only bundles from git sources that are not pinned are reported;
        checking for an actual newer version requires fetching the source.

        Returns:
            List of (bundle, source_location) tuples
        """
        self._ensure_loaded()
        outdated = []
        for bundle in self._bundles.values():
            if bundle.pinned:
                continue
            if bundle.source.type == SourceType.GIT:
                outdated.append((bundle, bundle.source.location))
        return outdated

    def set_pinned(self, name: str, pinned: bool) -> bool:
        """Pin or unpin a bundle (pinned bundles are skipped by update).

        Returns:
            True if bundle was found and updated
        """
        self._ensure_loaded()
        bundle = self._bundles.get(name)
        if bundle:
            bundle.pinned = pinned
            log.info("install_index_bundle_pinned_changed", name=name, pinned=pinned)
            return True
        return False

    def get_stats(self) -> dict:
        """Get statistics about installed bundles.

        Returns:
            Dict with counts by document kind and source
        """
        self._ensure_loaded()

        by_kind: dict[str, int] = {}
        by_source: dict[str, int] = {}
        files = 0
        pinned_count = 0

        for bundle in self._bundles.values():
            for kind, names in bundle.documents.items():
                by_kind[kind] = by_kind.get(kind, 0) + len(names)

            src = bundle.source.type.value
            by_source[src] = by_source.get(src, 0) + 1

            files += len(bundle.files)
            if bundle.pinned:
                pinned_count += 1

        return {
            "total": len(self._bundles),
            "files": files,
            "pinned": pinned_count,
            "by_kind": by_kind,
            "by_source": by_source,
        }

    def clear(self) -> None:
        """Clear all bundles from the index."""
        self._bundles = {}
        log.info("install_index_cleared")
