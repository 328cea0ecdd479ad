"""Plugin and marketplace manifest definitions.

A bundle registers itself through two JSON files kept in ``.claude-plugin/``:

plugin.json:
    {
        "name": "apec",
        "version": "1.2.0",
        "description": "Code review agents for SQL and JVM stacks",
        "author": {"name": "APEC Team"},
        "agents": ["./agents/mysql-reviewer.md"],
        "commands": ["./commands/review.md"]
    }

marketplace.json:
    {
        "name": "apec-marketplace",
        "owner": {"name": "APEC Team", "email": "team@example.com"},
        "plugins": [
            {"name": "apec", "source": "./", "description": "..."}
        ]
    }

Unknown keys are preserved in ``extra`` so rewriting a manifest never drops
fields this module does not model.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union
import json
import structlog

from quire.errors import ManifestError

log = structlog.get_logger()

MANIFEST_DIR = ".claude-plugin"
PLUGIN_MANIFEST = "plugin.json"
MARKETPLACE_MANIFEST = "marketplace.json"


def _as_list(value: Any) -> list[str]:
    """Registration arrays may be a single path string or a list of paths."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    raise ValueError(f"expected a path or list of paths, got {type(value).__name__}")


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


@dataclass
class Author:
    """Plugin author or marketplace owner.

    Attributes:
        name: Display name
        email: Contact email
        url: Homepage URL
    """
    name: str = ""
    email: str = ""
    url: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {"name": self.name}
        if self.email:
            data["email"] = self.email
        if self.url:
            data["url"] = self.url
        return data

    @classmethod
    def from_value(cls, value: Any) -> Optional["Author"]:
        """Create from a JSON value (object or plain name string)."""
        if value is None:
            return None
        if isinstance(value, str):
            return cls(name=value)
        if isinstance(value, dict):
            return cls(
                name=str(value.get("name", "")),
                email=str(value.get("email", "")),
                url=str(value.get("url", "")),
            )
        raise ValueError(f"author must be an object or string, got {type(value).__name__}")


@dataclass
class PluginManifest:
    """Contents of ``.claude-plugin/plugin.json``.

    Attributes:
        name: Unique plugin name (kebab-case)
        version: Semantic version string
        description: Brief description
        author: Plugin author
        homepage: Project homepage URL
        repository: Source code repository URL
        license: License identifier (MIT, Apache-2.0, etc.)
        keywords: Searchable keywords
        agents: Agent document paths, relative to the bundle root
        commands: Command document paths, relative to the bundle root
        skills: Skill paths, relative to the bundle root
        extra: Fields not modelled here, kept for round-tripping
    """
    name: str
    version: str = ""
    description: str = ""
    author: Optional[Author] = None
    homepage: str = ""
    repository: str = ""
    license: str = ""
    keywords: list[str] = field(default_factory=list)
    agents: list[str] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    # Keys that have a dedicated attribute
    KNOWN_KEYS = (
        "name", "version", "description", "author", "homepage", "repository",
        "license", "keywords", "agents", "commands", "skills",
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization.

        Empty optional fields are omitted.
        """
        data: dict[str, Any] = {"name": self.name}
        if self.version:
            data["version"] = self.version
        if self.description:
            data["description"] = self.description
        if self.author:
            data["author"] = self.author.to_dict()
        for key in ("homepage", "repository", "license"):
            value = getattr(self, key)
            if value:
                data[key] = value
        if self.keywords:
            data["keywords"] = list(self.keywords)
        data.update(self.extra)
        for key in ("agents", "commands", "skills"):
            value = getattr(self, key)
            if value:
                data[key] = list(value)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PluginManifest":
        """Create from dictionary.

        Raises:
            KeyError: If ``name`` is missing
            ValueError: If a field has the wrong shape
        """
        name = data["name"]
        if not isinstance(name, str) or not name.strip():
            raise ValueError("name must be a non-empty string")

        return cls(
            name=name.strip(),
            version=str(data.get("version", "")),
            description=str(data.get("description", "")),
            author=Author.from_value(data.get("author")),
            homepage=str(data.get("homepage", "")),
            repository=str(data.get("repository", "")),
            license=str(data.get("license", "")),
            keywords=_as_str_list(data.get("keywords")),
            agents=_as_list(data.get("agents")),
            commands=_as_list(data.get("commands")),
            skills=_as_list(data.get("skills")),
            extra={k: v for k, v in data.items() if k not in cls.KNOWN_KEYS},
        )

    def registered_paths(self) -> dict[str, list[str]]:
        """Registration arrays keyed by field name."""
        return {
            "agents": list(self.agents),
            "commands": list(self.commands),
            "skills": list(self.skills),
        }


@dataclass
class MarketplacePlugin:
    """One plugin entry in ``marketplace.json``.

    Attributes:
        name: Plugin name
        source: Relative path string, or an object such as
            ``{"source": "github", "repo": "owner/repo"}``
        description: Brief description
        version: Version advertised by the marketplace
        author: Plugin author
        category: Free-form category
        tags: Searchable tags
        keywords: Searchable keywords
        extra: Fields not modelled here
    """
    name: str
    source: Union[str, dict] = "./"
    description: str = ""
    version: str = ""
    author: Optional[Author] = None
    category: str = ""
    tags: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS = (
        "name", "source", "description", "version", "author", "category",
        "tags", "keywords",
    )

    @property
    def is_local(self) -> bool:
        """Whether the source is a path inside the marketplace repository."""
        return isinstance(self.source, str) and not self.source.startswith(
            ("http://", "https://", "git@")
        )

    def local_path(self, root: Path) -> Optional[Path]:
        """Resolve a local source against the marketplace root."""
        if not self.is_local:
            return None
        return (Path(root) / self.source).resolve()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {"name": self.name, "source": self.source}
        if self.description:
            data["description"] = self.description
        if self.version:
            data["version"] = self.version
        if self.author:
            data["author"] = self.author.to_dict()
        if self.category:
            data["category"] = self.category
        if self.tags:
            data["tags"] = list(self.tags)
        if self.keywords:
            data["keywords"] = list(self.keywords)
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MarketplacePlugin":
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise ValueError("plugin entry must be an object")
        name = data["name"]
        source = data.get("source", "./")
        if not isinstance(source, (str, dict)):
            raise ValueError(f"plugin '{name}': source must be a path or object")

        return cls(
            name=str(name).strip(),
            source=source,
            description=str(data.get("description", "")),
            version=str(data.get("version", "")),
            author=Author.from_value(data.get("author")),
            category=str(data.get("category", "")),
            tags=_as_str_list(data.get("tags")),
            keywords=_as_str_list(data.get("keywords")),
            extra={k: v for k, v in data.items() if k not in cls.KNOWN_KEYS},
        )


@dataclass
class MarketplaceManifest:
    """Contents of ``.claude-plugin/marketplace.json``.

    Attributes:
        name: Marketplace name (kebab-case)
        owner: Marketplace owner
        description: Brief description (also read from ``metadata``)
        version: Marketplace version (also read from ``metadata``)
        plugins: Plugin entries
        extra: Fields not modelled here
    """
    name: str
    owner: Optional[Author] = None
    description: str = ""
    version: str = ""
    plugins: list[MarketplacePlugin] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS = ("name", "owner", "description", "version", "plugins", "metadata")

    def get_plugin(self, name: str) -> Optional[MarketplacePlugin]:
        for plugin in self.plugins:
            if plugin.name == name:
                return plugin
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {"name": self.name}
        if self.owner:
            data["owner"] = self.owner.to_dict()
        metadata = dict(self.extra.get("metadata", {}))
        if self.description:
            metadata["description"] = self.description
        if self.version:
            metadata["version"] = self.version
        if metadata:
            data["metadata"] = metadata
        data.update({k: v for k, v in self.extra.items() if k != "metadata"})
        data["plugins"] = [p.to_dict() for p in self.plugins]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MarketplaceManifest":
        """Create from dictionary."""
        name = data["name"]
        if not isinstance(name, str) or not name.strip():
            raise ValueError("name must be a non-empty string")

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")

        plugins = data.get("plugins", [])
        if not isinstance(plugins, list):
            raise ValueError("plugins must be a list")

        extra = {k: v for k, v in data.items() if k not in cls.KNOWN_KEYS}
        leftover = {k: v for k, v in metadata.items() if k not in ("description", "version")}
        if leftover:
            extra["metadata"] = leftover

        return cls(
            name=name.strip(),
            owner=Author.from_value(data.get("owner")),
            description=str(data.get("description", metadata.get("description", ""))),
            version=str(data.get("version", metadata.get("version", ""))),
            plugins=[MarketplacePlugin.from_dict(p) for p in plugins],
            extra=extra,
        )


def _read_json(path: Path) -> dict:
    path = Path(path)
    if not path.exists():
        raise ManifestError(f"Manifest not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ManifestError(
            f"{path.name}: invalid JSON at line {e.lineno}, column {e.colno}: {e.msg}"
        ) from e
    except OSError as e:
        raise ManifestError(f"{path.name}: cannot read file: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"{path.name}: top-level value must be an object")
    return data


def load_plugin_manifest(path: Path) -> PluginManifest:
    """Load ``plugin.json``.

    Args:
        path: Path to the manifest file

    Returns:
        PluginManifest

    Raises:
        ManifestError: If the file is missing, malformed, or lacks ``name``
    """
    data = _read_json(path)
    try:
        manifest = PluginManifest.from_dict(data)
    except KeyError as e:
        raise ManifestError(f"{Path(path).name}: missing required field {e}") from e
    except ValueError as e:
        raise ManifestError(f"{Path(path).name}: {e}") from e

    log.debug("plugin_manifest_loaded", path=str(path), name=manifest.name)
    return manifest


def load_marketplace_manifest(path: Path) -> MarketplaceManifest:
    """Load ``marketplace.json``.

    Args:
        path: Path to the manifest file

    Returns:
        MarketplaceManifest

    Raises:
        ManifestError: If the file is missing, malformed, or lacks ``name``
    """
    data = _read_json(path)
    try:
        manifest = MarketplaceManifest.from_dict(data)
    except KeyError as e:
        raise ManifestError(f"{Path(path).name}: missing required field {e}") from e
    except ValueError as e:
        raise ManifestError(f"{Path(path).name}: {e}") from e

    log.debug(
        "marketplace_manifest_loaded",
        path=str(path),
        name=manifest.name,
        plugins=len(manifest.plugins),
    )
    return manifest


def save_manifest(
    manifest: Union[PluginManifest, MarketplaceManifest],
    path: Path,
) -> None:
    """Write a manifest as two-space indented JSON.

    Args:
        manifest: Manifest to write
        path: Destination file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(manifest.to_dict(), f, indent=2, ensure_ascii=False)
        f.write("\n")
    log.info("manifest_saved", path=str(path))
