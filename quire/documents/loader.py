"""Document discovery and loading for prompt bundles."""

import fnmatch
from pathlib import Path
from typing import Iterable, Optional
import structlog

from quire.documents.frontmatter import has_frontmatter, parse_frontmatter
from quire.documents.models import Document, DocumentKind
from quire.errors import FrontmatterError

log = structlog.get_logger()

# Top-level directory name -> document kind
KIND_DIRS = {
    "agents": DocumentKind.AGENT,
    "commands": DocumentKind.COMMAND,
    "skills": DocumentKind.SKILL,
    "rules": DocumentKind.RULE,
}

SKILL_FILE = "SKILL.md"


class DocumentLoader:
    """Discovers and loads Markdown documents from a bundle directory.

    Every file is loaded on its own. A file with broken frontmatter is still
    returned, with ``error`` set, so one bad document never hides the rest.

    Example:
        loader = DocumentLoader(Path("my-bundle"))
        for doc in loader.discover():
            if doc.kind == DocumentKind.AGENT:
                print(doc.name, doc.model)
    """

    def __init__(self, root: Path, ignore: Iterable[str] = ()):
        """Initialize the document loader.

        Args:
            root: Bundle root directory
            ignore: Glob patterns (relative to root) to skip
        """
        self.root = Path(root).resolve()
        self.ignore = list(ignore)
        self._discovered: list[Document] = []

    def discover(self) -> list[Document]:
        """Discover all Markdown documents under the root.

        Returns:
            Documents sorted by relative path.
        """
        self._discovered = []

        if not self.root.is_dir():
            log.debug("bundle_root_not_found", path=str(self.root))
            return []

        for path in sorted(self.root.rglob("*.md")):
            rel = path.relative_to(self.root)
            if self._is_skipped(rel):
                continue
            self._discovered.append(self.load_file(path))

        counts = {kind.value: 0 for kind in DocumentKind}
        for doc in self._discovered:
            counts[doc.kind.value] += 1

        log.info(
            "documents_discovered",
            root=str(self.root),
            total=len(self._discovered),
            **counts,
        )

        return self._discovered

    def load_file(self, path: Path, kind: Optional[DocumentKind] = None) -> Document:
        """Load a single Markdown document.

        Args:
            path: Path to the file
            kind: Document kind; inferred from the location when omitted

        Returns:
            Document (with ``error`` set if the frontmatter is invalid)
        """
        path = Path(path).resolve()
        try:
            rel_path = path.relative_to(self.root).as_posix()
        except ValueError:
            rel_path = path.name

        if kind is None:
            kind = self.classify(rel_path)

        default_name = self._default_name(path)

        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.warning("document_read_failed", path=rel_path, error=str(e))
            return Document(
                kind=kind,
                path=path,
                rel_path=rel_path,
                name=default_name,
                error=f"Cannot read file: {e}",
            )

        opens_block = has_frontmatter(text)

        try:
            meta, body = parse_frontmatter(text)
        except FrontmatterError as e:
            log.warning("frontmatter_invalid", path=rel_path, error=str(e))
            return Document(
                kind=kind,
                path=path,
                rel_path=rel_path,
                name=default_name,
                body=text,
                has_frontmatter=opens_block,
                error=str(e),
            )

        name = meta.get("name")
        description = meta.get("description")

        return Document(
            kind=kind,
            path=path,
            rel_path=rel_path,
            name=str(name).strip() if name else default_name,
            description=str(description).strip() if description else "",
            meta=meta,
            body=body,
            has_frontmatter=opens_block,
        )

    def classify(self, rel_path: str) -> DocumentKind:
        """Work out a document's kind from its path relative to the root.

        The first directory named ``agents``, ``commands``, ``skills`` or
        ``rules`` decides the kind, so bundles that keep several plugins in
        subdirectories are classified the same way.

        Args:
            rel_path: Posix path relative to the bundle root

        Returns:
            DocumentKind
        """
        parts = rel_path.split("/")
        for i, part in enumerate(parts[:-1]):
            kind = KIND_DIRS.get(part)
            if kind is None:
                continue
            if kind == DocumentKind.SKILL:
                remaining = parts[i + 1:]
                # skills/x.md or skills/x/SKILL.md; other files in a skill
                # directory are supporting material
                if len(remaining) == 1 or remaining[-1] == SKILL_FILE:
                    return DocumentKind.SKILL
                return DocumentKind.META
            return kind
        return DocumentKind.META

    def _default_name(self, path: Path) -> str:
        if path.name == SKILL_FILE:
            return path.parent.name
        return path.stem

    def _is_skipped(self, rel: Path) -> bool:
        if any(part.startswith(".") for part in rel.parts):
            return True
        rel_str = rel.as_posix()
        return any(fnmatch.fnmatch(rel_str, pattern) for pattern in self.ignore)

    def get_discovered(self) -> list[Document]:
        """Get list of discovered documents."""
        return self._discovered.copy()

    def get_by_kind(self, kind: DocumentKind) -> list[Document]:
        """Get discovered documents of one kind."""
        return [d for d in self._discovered if d.kind == kind]
