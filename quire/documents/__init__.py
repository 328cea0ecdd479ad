"""Markdown documents in a prompt bundle.

Documents are classified by where they live in the bundle:

- agents/*.md - agent persona prompts
- commands/*.md - slash command prompts
- skills/<name>/SKILL.md or skills/*.md - skill reference guides
- rules/*.md - coding convention rules
- anything else - meta documents (README, changelog, notes)

Example agent document:
    ---
    name: mysql-reviewer
    description: Reviews MySQL schemas and queries
    tools: Read, Grep, Glob
    model: sonnet
    ---

    You are a MySQL performance reviewer...
"""

from quire.documents.frontmatter import (
    has_frontmatter,
    parse_frontmatter,
    render_frontmatter,
    split_list,
)
from quire.documents.models import (
    Document,
    DocumentKind,
)
from quire.documents.loader import DocumentLoader

__all__ = [
    # Frontmatter
    "has_frontmatter",
    "parse_frontmatter",
    "render_frontmatter",
    "split_list",
    # Models
    "Document",
    "DocumentKind",
    # Loader
    "DocumentLoader",
]
