"""Bundle marketplace tooling for quire.

Installs bundles into the assistant's config directory, tracks where they
came from, and searches and catalogs the documents they ship.

Features:
- Install bundles from local paths or git repositories
- Track installed bundles and the files they own
- Update and uninstall bundles cleanly
- Search documents by name, description, kind or tags
- Generate JSON or Markdown catalogs

CLI Commands:
    quire install <source>    # Install from path/git
    quire uninstall <name>    # Remove installed bundle
    quire update [name]       # Reinstall from recorded source
    quire installed           # List installed bundles
    quire search <query>      # Search documents
    quire catalog             # Render a catalog
"""

from quire.marketplace.index import (
    BundleSource,
    InstallIndex,
    InstalledBundle,
    SourceType,
)
from quire.marketplace.installer import (
    BundleInstaller,
    InstallResult,
    UninstallResult,
)
from quire.marketplace.search import (
    DocumentSearcher,
    SearchResult,
)
from quire.marketplace.catalog import (
    build_catalog,
    render_catalog,
)

__all__ = [
    # Index
    "BundleSource",
    "InstallIndex",
    "InstalledBundle",
    "SourceType",
    # Installer
    "BundleInstaller",
    "InstallResult",
    "UninstallResult",
    # Search
    "DocumentSearcher",
    "SearchResult",
    # Catalog
    "build_catalog",
    "render_catalog",
]
