"""Document search and discovery.

Searches the documents of an opened bundle together with the documents of
bundles recorded in the install index.
"""

from dataclasses import dataclass, field
from typing import Optional
import structlog

from quire.bundle.bundle import Bundle
from quire.documents.models import Document, DocumentKind
from quire.marketplace.index import InstallIndex, InstalledBundle

log = structlog.get_logger()


@dataclass
class SearchResult:
    """Result from a document search.

    Attributes:
        name: Document name
        kind: Document kind value
        description: Document description
        tags: Document tags
        bundle: Name of the bundle holding the document
        path: Relative path inside the bundle (empty for installed documents)
        installed: Whether the document comes from an installed bundle
        source: Source location if installed
        score: Search relevance score (0-100)
    """
    name: str
    kind: str
    description: str
    tags: list[str] = field(default_factory=list)
    bundle: str = ""
    path: str = ""
    installed: bool = False
    source: Optional[str] = None
    score: int = 0

    @classmethod
    def from_document(cls, doc: Document, bundle_name: str = "") -> "SearchResult":
        """Create from a loaded Document."""
        return cls(
            name=doc.name,
            kind=doc.kind.value,
            description=doc.description,
            tags=doc.tags,
            bundle=bundle_name,
            path=doc.rel_path,
        )

    @classmethod
    def from_installed(cls, record: InstalledBundle, kind: str, name: str) -> "SearchResult":
        """Create from a document name recorded for an installed bundle."""
        return cls(
            name=name,
            kind=kind,
            description=record.description,
            bundle=record.name,
            installed=True,
            source=record.source.location,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind,
            "description": self.description,
            "tags": list(self.tags),
            "bundle": self.bundle,
            "path": self.path,
            "installed": self.installed,
            "source": self.source,
            "score": self.score,
        }


class DocumentSearcher:
    """Searches documents in a bundle and in installed bundles.

    Example:
        searcher = DocumentSearcher(Bundle.open(Path(".")), index=InstallIndex())

        # Search by query
        results = searcher.search("review")

        # Search by kind
        results = searcher.search_by_kind(DocumentKind.AGENT)

        # List all
        results = searcher.list_all()
    """

    def __init__(
        self,
        bundle: Optional[Bundle] = None,
        index: Optional[InstallIndex] = None,
    ):
        """Initialize the searcher.

        Args:
            bundle: Opened bundle to search (optional)
            index: Install index whose bundles are searched as well (optional)
        """
        self.bundle = bundle
        self.index = index

    def search(
        self,
        query: str,
        kind: Optional[DocumentKind] = None,
        tags: Optional[list[str]] = None,
        installed_only: bool = False,
    ) -> list[SearchResult]:
        """Search documents by query string.

        Searches name, description, tags and kind.

        Args:
            query: Search query
            kind: Filter by document kind
            tags: Only keep documents carrying one of these tags
            installed_only: Only search installed bundles

        Returns:
            List of SearchResults sorted by relevance
        """
        query = query.lower().strip()
        wanted_tags = [t.lower() for t in tags] if tags else []
        results = []

        for result in self._candidates(installed_only):
            if kind and result.kind != kind.value:
                continue
            if wanted_tags and not any(t.lower() in wanted_tags for t in result.tags):
                continue

            score = self._calculate_score(query, result)
            if score > 0:
                result.score = score
                results.append(result)

        # Sort by score descending, then name for a stable listing
        results.sort(key=lambda r: (-r.score, r.name))

        log.debug("documents_searched", query=query, results=len(results))
        return results

    def search_by_kind(self, kind: DocumentKind, installed_only: bool = False) -> list[SearchResult]:
        """List documents of one kind.

        Args:
            kind: Document kind
            installed_only: Only search installed bundles

        Returns:
            List of SearchResults
        """
        return [r for r in self.list_all(installed_only) if r.kind == kind.value]

    def search_by_tags(self, tags: list[str], installed_only: bool = False) -> list[SearchResult]:
        """Search documents by tags.

        Args:
            tags: Tags to search for (any match)
            installed_only: Only search installed bundles

        Returns:
            List of SearchResults
        """
        tags = [t.lower() for t in tags]
        return [
            r for r in self.list_all(installed_only)
            if any(t.lower() in tags for t in r.tags)
        ]

    def list_all(self, installed_only: bool = False) -> list[SearchResult]:
        """List every available document.

        Args:
            installed_only: Only list installed bundles

        Returns:
            List of SearchResults
        """
        results = self._candidates(installed_only)
        for result in results:
            result.score = 50
        return results

    def get_info(self, name: str) -> Optional[SearchResult]:
        """Get details about a specific document.

        The open bundle wins over installed bundles.

        Args:
            name: Document name

        Returns:
            SearchResult or None if not found
        """
        for result in self._candidates(installed_only=False):
            if result.name == name:
                return result
        return None

    def _candidates(self, installed_only: bool) -> list[SearchResult]:
        installed: dict[tuple[str, str], InstalledBundle] = {}
        if self.index:
            self.index.load()
            for record in self.index.get_all():
                for kind, names in sorted(record.documents.items()):
                    for name in names:
                        installed.setdefault((kind, name), record)

        results = []
        seen: set[tuple[str, str]] = set()

        if self.bundle:
            for doc in self.bundle.documents:
                if doc.kind == DocumentKind.META or doc.error:
                    continue
                key = (doc.kind.value, doc.name)
                record = installed.get(key)
                if installed_only and record is None:
                    continue
                result = SearchResult.from_document(doc, self.bundle.name)
                if record:
                    result.installed = True
                    result.source = record.source.location
                results.append(result)
                seen.add(key)

        for (kind, name), record in installed.items():
            # Documents of the open bundle are not repeated
            if (kind, name) not in seen:
                results.append(SearchResult.from_installed(record, kind, name))

        return results

    def _calculate_score(self, query: str, result: SearchResult) -> int:
        """Calculate search relevance score.

        Args:
            query: Lower-cased search query
            result: Candidate result

        Returns:
            Score from 0-100
        """
        if not query:
            return 50  # Default score for empty query

        name = result.name.lower()

        # Exact name match
        if query == name:
            return 100

        score = 0

        # Name contains query
        if query in name:
            score += 60

        # Description contains query
        if query in result.description.lower():
            score += 30

        # Tag match
        for tag in result.tags:
            if query == tag.lower():
                score += 40
            elif query in tag.lower():
                score += 20

        # Kind match
        if query in result.kind:
            score += 25

        return min(score, 100)

