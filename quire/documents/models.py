"""Document definitions for prompt bundles."""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from quire.documents.frontmatter import split_list

HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")


class DocumentKind(str, Enum):
    """Kinds of Markdown documents found in a bundle."""

    AGENT = "agent"        # Persona prompt for a subagent
    SKILL = "skill"        # Reference guide loaded as context
    RULE = "rule"          # Coding convention rules
    COMMAND = "command"    # Slash command prompt
    META = "meta"          # README, changelog, notes


@dataclass
class Document:
    """A Markdown document discovered in a bundle.

    Attributes:
        kind: What the document is used for
        path: Absolute path to the file
        rel_path: Path relative to the bundle root (posix separators)
        name: Frontmatter name, else derived from the file name
        description: Frontmatter description
        meta: Raw frontmatter mapping
        body: Markdown body after the frontmatter
        has_frontmatter: Whether the file starts with a frontmatter block
        error: Frontmatter error message if parsing failed
    """

    kind: DocumentKind
    path: Path
    rel_path: str
    name: str
    description: str = ""
    meta: dict[str, Any] = field(default_factory=dict)
    body: str = ""
    has_frontmatter: bool = False
    error: Optional[str] = None

    @property
    def tools(self) -> list[str]:
        """Tools requested by an agent (or allowed by a command)."""
        if "tools" in self.meta:
            return split_list(self.meta["tools"])
        return split_list(self.meta.get("allowed-tools"))

    @property
    def model(self) -> Optional[str]:
        model = self.meta.get("model")
        return str(model).strip() if model else None

    @property
    def tags(self) -> list[str]:
        return split_list(self.meta.get("tags") or self.meta.get("keywords"))

    @property
    def headings(self) -> list[tuple[int, str]]:
        """Markdown headings as (level, text), skipping fenced code."""
        found = []
        in_fence = False
        for line in self.body.split("\n"):
            if FENCE_PATTERN.match(line):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            match = HEADING_PATTERN.match(line)
            if match:
                found.append((len(match.group(1)), match.group(2)))
        return found

    @property
    def title(self) -> str:
        """First top-level heading, falling back to the name."""
        for level, text in self.headings:
            if level == 1:
                return text
        return self.name

    @property
    def word_count(self) -> int:
        return len(self.body.split())

    @property
    def is_empty(self) -> bool:
        return not self.body.strip()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "kind": self.kind.value,
            "name": self.name,
            "description": self.description,
            "path": self.rel_path,
            "model": self.model,
            "tools": self.tools,
            "tags": self.tags,
            "words": self.word_count,
            "error": self.error,
        }
