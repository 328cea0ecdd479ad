"""Catalog generation for a bundle.

Produces the summary of what a bundle ships: one entry per agent, command,
skill and rule, as JSON or as Markdown tables for a README.
"""

import json
from datetime import datetime

import structlog

from quire.bundle.bundle import Bundle
from quire.documents.models import DocumentKind

log = structlog.get_logger()

CATALOG_FORMATS = ("json", "markdown")

# Kinds listed in a catalog, in display order
CATALOG_KINDS = [
    (DocumentKind.AGENT, "Agents"),
    (DocumentKind.COMMAND, "Commands"),
    (DocumentKind.SKILL, "Skills"),
    (DocumentKind.RULE, "Rules"),
]


def build_catalog(bundle: Bundle) -> dict:
    """Build a catalog dictionary for a bundle.

    Args:
        bundle: Opened bundle

    Returns:
        Bundle metadata plus document entries keyed by kind
    """
    documents: dict[str, list[dict]] = {}
    for kind, _ in CATALOG_KINDS:
        entries = []
        for doc in sorted(bundle.by_kind(kind), key=lambda d: d.name):
            entries.append({
                "name": doc.name,
                "description": doc.description,
                "path": doc.rel_path,
                "model": doc.model,
                "tools": doc.tools,
                "tags": doc.tags,
            })
        documents[kind.value] = entries

    plugins = []
    if bundle.marketplace:
        for entry in bundle.marketplace.plugins:
            plugins.append({
                "name": entry.name,
                "description": entry.description,
                "version": entry.version,
                "category": entry.category,
            })

    catalog = {
        "name": bundle.name,
        "version": bundle.version,
        "description": bundle.description,
        "generated_at": datetime.now().isoformat(timespec="seconds"),
        "counts": {kind: len(entries) for kind, entries in documents.items()},
        "documents": documents,
        "plugins": plugins,
    }

    log.debug("catalog_built", name=bundle.name, counts=catalog["counts"])
    return catalog


def _cell(value: str) -> str:
    """Make text safe for a Markdown table cell."""
    return " ".join(str(value).split()).replace("|", "\\|")


def render_catalog(bundle: Bundle, fmt: str = "markdown") -> str:
    """Render a bundle catalog.

    Args:
        bundle: Opened bundle
        fmt: "json" or "markdown"

    Returns:
        Rendered catalog text

    Raises:
        ValueError: If the format is unknown
    """
    if fmt not in CATALOG_FORMATS:
        raise ValueError(f"Unknown catalog format: {fmt} (expected one of {', '.join(CATALOG_FORMATS)})")

    catalog = build_catalog(bundle)

    if fmt == "json":
        return json.dumps(catalog, indent=2) + "\n"

    lines = [f"# {catalog['name']}", ""]
    if catalog["description"]:
        lines.extend([catalog["description"], ""])
    if catalog["version"]:
        lines.extend([f"Version: {catalog['version']}", ""])

    for kind, heading in CATALOG_KINDS:
        entries = catalog["documents"][kind.value]
        if not entries:
            continue

        lines.append(f"## {heading} ({len(entries)})")
        lines.append("")
        if kind == DocumentKind.AGENT:
            lines.append("| Name | Description | Model | Tools |")
            lines.append("|------|-------------|-------|-------|")
            for entry in entries:
                lines.append(
                    f"| `{entry['name']}` | {_cell(entry['description'])} "
                    f"| {entry['model'] or '-'} | {_cell(', '.join(entry['tools'])) or '-'} |"
                )
        else:
            lines.append("| Name | Description | Path |")
            lines.append("|------|-------------|------|")
            for entry in entries:
                lines.append(
                    f"| `{entry['name']}` | {_cell(entry['description'])} | `{entry['path']}` |"
                )
        lines.append("")

    if catalog["plugins"]:
        lines.append(f"## Marketplace plugins ({len(catalog['plugins'])})")
        lines.append("")
        lines.append("| Name | Description | Version |")
        lines.append("|------|-------------|---------|")
        for plugin in catalog["plugins"]:
            lines.append(
                f"| `{plugin['name']}` | {_cell(plugin['description'])} | {plugin['version'] or '-'} |"
            )
        lines.append("")

    return "\n".join(lines)
