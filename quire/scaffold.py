"""Templates for new bundles and documents.

``init_bundle`` lays out an empty bundle with both manifests, and
``new_document`` drops a template agent, skill, command or rule at its
canonical path.
"""

from pathlib import Path
from typing import Optional

import structlog

from quire.bundle.manifest import (
    MANIFEST_DIR,
    MARKETPLACE_MANIFEST,
    PLUGIN_MANIFEST,
    Author,
    MarketplaceManifest,
    MarketplacePlugin,
    PluginManifest,
    save_manifest,
)
from quire.documents.frontmatter import render_frontmatter
from quire.documents.loader import SKILL_FILE
from quire.documents.models import DocumentKind
from quire.errors import QuireError
from quire.lint.validator import KEBAB_CASE

log = structlog.get_logger()

BUNDLE_DIRS = ("agents", "commands", "skills", "rules")

SCAFFOLD_KINDS = (
    DocumentKind.AGENT,
    DocumentKind.SKILL,
    DocumentKind.COMMAND,
    DocumentKind.RULE,
)


def _check_name(name: str) -> None:
    if not KEBAB_CASE.match(name):
        raise QuireError(f"Name '{name}' must be kebab-case (e.g. 'code-reviewer')")


def _title(name: str) -> str:
    return name.replace("-", " ").title()


def document_path(root: Path, kind: DocumentKind, name: str) -> Path:
    """Canonical location of a document of the given kind."""
    root = Path(root)
    if kind == DocumentKind.AGENT:
        return root / "agents" / f"{name}.md"
    if kind == DocumentKind.COMMAND:
        return root / "commands" / f"{name}.md"
    if kind == DocumentKind.SKILL:
        return root / "skills" / name / SKILL_FILE
    if kind == DocumentKind.RULE:
        return root / "rules" / f"{name}.md"
    raise QuireError(f"Cannot scaffold a {kind.value} document")


def init_bundle(
    root: Path,
    name: str,
    description: str = "",
    author: str = "",
) -> list[Path]:
    """Create an empty bundle.

    Args:
        root: Directory to create the bundle in (created if missing)
        name: Bundle name (kebab-case)
        description: Short description for both manifests
        author: Author / owner name

    Returns:
        Files written

    Raises:
        QuireError: If the name is invalid or a manifest already exists
    """
    _check_name(name)
    root = Path(root)

    plugin_path = root / MANIFEST_DIR / PLUGIN_MANIFEST
    marketplace_path = root / MANIFEST_DIR / MARKETPLACE_MANIFEST
    for path in (plugin_path, marketplace_path):
        if path.exists():
            raise QuireError(f"Manifest already exists: {path}")

    for directory in BUNDLE_DIRS:
        (root / directory).mkdir(parents=True, exist_ok=True)

    owner = Author(name=author) if author else None
    plugin = PluginManifest(
        name=name,
        version="0.1.0",
        description=description,
        author=owner,
    )
    marketplace = MarketplaceManifest(
        name=name,
        owner=owner,
        description=description,
        version="0.1.0",
        plugins=[
            MarketplacePlugin(
                name=name,
                source="./",
                description=description,
                version="0.1.0",
            )
        ],
    )
    save_manifest(plugin, plugin_path)
    save_manifest(marketplace, marketplace_path)
    written = [plugin_path, marketplace_path]

    readme = root / "README.md"
    if not readme.exists():
        readme.write_text(
            f"# {_title(name)}\n\n"
            f"{description or 'Agents, skills, commands and rules for an AI coding assistant.'}\n\n"
            "## Install\n\n"
            "```\n"
            f"quire install ./{root.name}\n"
            "```\n\n"
            "## Layout\n\n"
            "- `agents/` - agent persona prompts\n"
            "- `commands/` - slash commands\n"
            "- `skills/` - skill guides (`skills/<name>/SKILL.md`)\n"
            "- `rules/` - coding convention rules\n",
            encoding="utf-8",
        )
        written.append(readme)

    log.info("bundle_initialized", root=str(root), name=name, files=len(written))
    return written


def new_document(
    root: Path,
    kind: DocumentKind,
    name: str,
    description: str = "",
    model: Optional[str] = None,
    tools: Optional[list[str]] = None,
) -> Path:
    """Write a template document.

    Args:
        root: Bundle root
        kind: Agent, skill, command or rule
        name: Document name (kebab-case)
        description: Frontmatter description
        model: Agent model (agents only)
        tools: Agent tools or command allowed-tools

    Returns:
        Path of the new file

    Raises:
        QuireError: If the name is invalid or the file already exists
    """
    _check_name(name)
    path = document_path(root, kind, name)
    if path.exists():
        raise QuireError(f"File already exists: {path}")

    title = _title(name)
    meta: dict = {}

    if kind == DocumentKind.AGENT:
        meta["name"] = name
        meta["description"] = description or f"Use this agent when ... ({title})"
        if tools:
            meta["tools"] = ", ".join(tools)
        meta["model"] = model or "sonnet"
        body = f"""You are {title}, a specialist agent.

## Responsibilities

- Describe what this agent is responsible for
- Describe what it should hand back to the caller

## Approach

1. Gather the context you need before acting
2. Keep changes small and explain them
3. Report results clearly
"""
    elif kind == DocumentKind.SKILL:
        meta["name"] = name
        meta["description"] = description or f"Reference guide for {title}. Use when ..."
        body = f"""# {title}

## When to use

Describe the situations this skill applies to.

## Guidelines

- Key practice one
- Key practice two

## Examples

```
example here
```
"""
    elif kind == DocumentKind.COMMAND:
        meta["description"] = description or f"{title} command"
        if tools:
            meta["allowed-tools"] = ", ".join(tools)
        body = f"""# {title}

Describe what the command should do with $ARGUMENTS.
"""
    else:
        if description:
            meta["description"] = description
        body = f"""# {title}

- Rule one
- Rule two
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_frontmatter(meta, body), encoding="utf-8")

    log.info("document_created", kind=kind.value, name=name, path=str(path))
    return path
