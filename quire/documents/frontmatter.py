"""YAML frontmatter parsing for Markdown documents.

A document carries frontmatter only when its very first line is ``---``.
The block ends at the next line that is exactly ``---`` (or ``...``), and
everything after that line is the Markdown body.
"""

from typing import Any
import yaml

from quire.errors import FrontmatterError

FRONTMATTER_DELIM = "---"
FRONTMATTER_END = ("---", "...")


def _normalize(text: str) -> str:
    return text.replace("\r\n", "\n").lstrip("\ufeff")


def has_frontmatter(text: str) -> bool:
    """Whether the first line opens a frontmatter block (exactly ``---``)."""
    return _normalize(text).split("\n", 1)[0] == FRONTMATTER_DELIM


def parse_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split a Markdown document into frontmatter and body.

    Args:
        text: Full document text

    Returns:
        Tuple of (meta, body). ``meta`` is empty when the document has no
        frontmatter block.

    Raises:
        FrontmatterError: If the block is unterminated, not valid YAML, or
            not a mapping.
    """
    normalized = _normalize(text)
    if not has_frontmatter(normalized):
        return {}, normalized

    lines = normalized.split("\n")
    end = None
    for i in range(1, len(lines)):
        if lines[i] in FRONTMATTER_END:
            end = i
            break

    if end is None:
        raise FrontmatterError("Unterminated frontmatter: missing closing '---'")

    block = "\n".join(lines[1:end])
    body = "\n".join(lines[end + 1:])

    try:
        meta = yaml.safe_load(block) if block.strip() else {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        if mark is not None:
            # +2: one for the opening delimiter, one for 1-based numbering
            raise FrontmatterError(
                f"Invalid YAML at line {mark.line + 2}: {getattr(e, 'problem', e)}"
            ) from e
        raise FrontmatterError(f"Invalid YAML: {e}") from e

    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise FrontmatterError(
            f"Frontmatter must be a mapping, got {type(meta).__name__}"
        )

    return meta, body


def render_frontmatter(meta: dict[str, Any], body: str) -> str:
    """Render a document from frontmatter and body.

    Args:
        meta: Frontmatter mapping (insertion order is kept)
        body: Markdown body

    Returns:
        Document text
    """
    if not meta:
        return body

    block = yaml.safe_dump(
        meta,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    if not body.startswith("\n"):
        body = "\n" + body
    return f"{FRONTMATTER_DELIM}\n{block}{FRONTMATTER_DELIM}\n{body}"


def split_list(value: Any) -> list[str]:
    """Normalise a frontmatter list field.

    Agent files write ``tools`` either as a YAML list or as a
    comma-separated string (``tools: Read, Grep, Glob``).
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value).strip()]
