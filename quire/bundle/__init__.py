"""Prompt bundles: manifests, documents and registration.

A bundle is a directory of Markdown documents registered with an AI coding
assistant's plugin marketplace through ``.claude-plugin/plugin.json`` and
``.claude-plugin/marketplace.json``.
"""

from quire.bundle.manifest import (
    MANIFEST_DIR,
    MARKETPLACE_MANIFEST,
    PLUGIN_MANIFEST,
    Author,
    MarketplaceManifest,
    MarketplacePlugin,
    PluginManifest,
    load_marketplace_manifest,
    load_plugin_manifest,
    save_manifest,
)
from quire.bundle.bundle import Bundle
from quire.bundle.sync import (
    FieldChange,
    SyncPlan,
    apply_sync,
    plan_sync,
)

__all__ = [
    # Manifest
    "MANIFEST_DIR",
    "MARKETPLACE_MANIFEST",
    "PLUGIN_MANIFEST",
    "Author",
    "MarketplaceManifest",
    "MarketplacePlugin",
    "PluginManifest",
    "load_marketplace_manifest",
    "load_plugin_manifest",
    "save_manifest",
    # Bundle
    "Bundle",
    # Sync
    "FieldChange",
    "SyncPlan",
    "apply_sync",
    "plan_sync",
]
