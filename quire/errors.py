"""Exceptions raised by Quire."""


class QuireError(Exception):
    """Base class for expected Quire failures."""
    pass


class FrontmatterError(QuireError):
    """Invalid or unterminated YAML frontmatter in a Markdown document."""
    pass


class ManifestError(QuireError):
    """A plugin or marketplace manifest could not be loaded."""
    pass


class BundleNotFoundError(QuireError):
    """The bundle root does not exist or is not a directory."""
    pass
