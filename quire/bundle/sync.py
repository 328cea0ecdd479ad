"""Keep plugin.json registration arrays in step with the files on disk."""

from dataclasses import dataclass, field
from typing import Optional
import structlog

from quire.bundle.bundle import Bundle
from quire.bundle.manifest import PluginManifest, save_manifest
from quire.documents.models import DocumentKind
from quire.errors import ManifestError

log = structlog.get_logger()

# Manifest field -> (document kind, directory the field registers)
SYNCED_FIELDS = {
    "agents": (DocumentKind.AGENT, "agents"),
    "commands": (DocumentKind.COMMAND, "commands"),
}


def _normalize(ref: str) -> str:
    return ref.strip().removeprefix("./")


@dataclass
class FieldChange:
    """Difference for one registration array."""
    current: list[str]
    expected: list[str]

    @property
    def added(self) -> list[str]:
        have = {_normalize(r) for r in self.current}
        return [r for r in self.expected if _normalize(r) not in have]

    @property
    def removed(self) -> list[str]:
        want = {_normalize(r) for r in self.expected}
        return [r for r in self.current if _normalize(r) not in want]

    @property
    def changed(self) -> bool:
        return self.current != self.expected


@dataclass
class SyncPlan:
    """Planned rewrite of plugin.json.

    Attributes:
        fields: Per-field differences
        create: True if plugin.json does not exist yet
    """
    fields: dict[str, FieldChange] = field(default_factory=dict)
    create: bool = False

    @property
    def in_sync(self) -> bool:
        return not self.create and not any(c.changed for c in self.fields.values())


def plan_sync(bundle: Bundle) -> SyncPlan:
    """Compare registration arrays against the documents on disk.

    Only documents directly under the bundle's own ``agents/`` and
    ``commands/`` directories are registered; documents belonging to nested
    plugins are left to their own manifests.

    Args:
        bundle: Opened bundle

    Returns:
        SyncPlan

    Raises:
        ManifestError: If plugin.json exists but cannot be parsed
    """
    if bundle.plugin_error:
        raise ManifestError(f"Cannot sync a broken manifest: {bundle.plugin_error}")

    plan = SyncPlan(create=bundle.plugin is None)
    current = bundle.plugin.registered_paths() if bundle.plugin else {}

    for field_name, (kind, directory) in SYNCED_FIELDS.items():
        expected = sorted(
            f"./{doc.rel_path}"
            for doc in bundle.by_kind(kind)
            if doc.rel_path.split("/")[0] == directory
        )
        plan.fields[field_name] = FieldChange(
            current=current.get(field_name, []),
            expected=expected,
        )

    return plan


def apply_sync(bundle: Bundle, plan: Optional[SyncPlan] = None) -> SyncPlan:
    """Rewrite plugin.json with the planned registration arrays.

    All fields other than the synced arrays are preserved. A minimal
    manifest named after the bundle directory is created when none exists.

    Args:
        bundle: Opened bundle
        plan: Plan from plan_sync (computed when omitted)

    Returns:
        The applied plan
    """
    plan = plan or plan_sync(bundle)

    manifest = bundle.plugin or PluginManifest(name=bundle.root.name)
    for field_name, change in plan.fields.items():
        setattr(manifest, field_name, list(change.expected))

    save_manifest(manifest, bundle.plugin_manifest_path)
    bundle.plugin = manifest

    log.info(
        "manifest_synced",
        path=str(bundle.plugin_manifest_path),
        created=plan.create,
        **{name: len(change.expected) for name, change in plan.fields.items()},
    )
    return plan
