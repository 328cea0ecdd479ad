"""Bundle installer.

Copies a bundle's agents, commands and skills into the assistant's config
directory (``~/.claude`` by default) and records every installed file in the
install index so the bundle can be updated or removed later.
"""

import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
import structlog

from quire.bundle.bundle import Bundle
from quire.documents.loader import SKILL_FILE
from quire.documents.models import DocumentKind
from quire.errors import QuireError
from quire.lint.validator import BundleValidator, ValidationResult
from quire.marketplace.index import (
    BundleSource,
    InstallIndex,
    InstalledBundle,
    SourceType,
)

log = structlog.get_logger()

# Document kind -> directory under the install dir
INSTALL_DIRS = {
    DocumentKind.AGENT: "agents",
    DocumentKind.COMMAND: "commands",
    DocumentKind.SKILL: "skills",
}

GIT_HOSTS = ("github.com", "gitlab.com", "bitbucket.org")


@dataclass
class InstallResult:
    """Result of a bundle installation.

    Attributes:
        success: Whether installation succeeded
        bundle: Installed bundle record (if successful)
        error: Error message (if failed)
        validation: Validation result (if validation was performed)
        warnings: List of warning messages
        conflicts: Destination files that blocked the install
    """
    success: bool
    bundle: Optional[InstalledBundle] = None
    error: Optional[str] = None
    validation: Optional[ValidationResult] = None
    warnings: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)


@dataclass
class UninstallResult:
    """Result of a bundle uninstallation.

    Attributes:
        success: Whether uninstallation succeeded
        name: Bundle name
        removed: Number of files removed
        error: Error message (if failed)
    """
    success: bool
    name: str
    removed: int = 0
    error: Optional[str] = None


class BundleInstaller:
    """Installs bundles from local directories or git repositories.

    Example:
        installer = BundleInstaller(install_dir=Path("~/.claude").expanduser())

        result = installer.install("acme/review-agents")
        result = installer.install("./my-bundle")

        installer.uninstall("review-agents")
    """

    def __init__(
        self,
        install_dir: Optional[Path] = None,
        index: Optional[InstallIndex] = None,
        validate: bool = True,
        strict: bool = False,
        force: bool = False,
        validator: Optional[BundleValidator] = None,
    ):
        """Initialize the installer.

        Args:
            install_dir: Config directory to install into. Defaults to ~/.claude
            index: Install index (created if not provided)
            validate: Whether to lint bundles before installing
            strict: Whether to treat lint warnings as errors
            force: Overwrite files not owned by the bundle being installed
            validator: Validator to use (built from ``strict`` if omitted)
        """
        self.install_dir = Path(install_dir).expanduser() if install_dir else (Path.home() / ".claude")
        self.index = index or InstallIndex()
        self.validate = validate
        self.strict = strict
        self.force = force
        self.validator = validator or BundleValidator(strict=strict)

    def detect_source_type(self, source: str) -> tuple[SourceType, str]:
        """Detect the source type from a string.

        Args:
            source: Source string (path, git URL, or owner/repo shorthand)

        Returns:
            Tuple of (SourceType, normalized_location)
        """
        path = Path(source).expanduser()
        if path.exists():
            return SourceType.LOCAL, str(path.resolve())

        if source.endswith(".git") or source.startswith("git@"):
            return SourceType.GIT, source

        # GitHub shorthand: owner/repo
        if "/" in source and not source.startswith(("http://", "https://", ".", "/", "~")):
            parts = source.split("/")
            if len(parts) == 2 and all(parts):
                return SourceType.GIT, f"https://github.com/{source}.git"

        parsed = urlparse(source)
        if parsed.scheme in ("http", "https") and any(host in parsed.netloc for host in GIT_HOSTS):
            if not source.endswith(".git"):
                source = source.rstrip("/") + ".git"
            return SourceType.GIT, source

        # Anything else is treated as a (missing) local path
        return SourceType.LOCAL, source

    def install(
        self,
        source: str,
        ref: Optional[str] = None,
        plugin: Optional[str] = None,
    ) -> InstallResult:
        """Install a bundle from any supported source.

        Args:
            source: Bundle source (path, git URL, or owner/repo)
            ref: Git ref (branch/tag) for git sources
            plugin: Marketplace entry to install when the source is a
                marketplace holding several plugins

        Returns:
            InstallResult with status and details
        """
        source_type, location = self.detect_source_type(source)

        if source_type == SourceType.GIT:
            return self.install_from_git(location, ref=ref, plugin=plugin)
        return self.install_from_path(Path(location), plugin=plugin)

    def install_from_path(
        self,
        path: Path,
        plugin: Optional[str] = None,
        source: Optional[BundleSource] = None,
    ) -> InstallResult:
        """Install a bundle from a local directory.

        Args:
            path: Bundle root directory
            plugin: Marketplace entry to install (optional)
            source: Source record to store (defaults to this local path)

        Returns:
            InstallResult
        """
        self.index.load()

        try:
            bundle = Bundle.open(path)
            if plugin:
                bundle = self._select_plugin(bundle, plugin)
        except QuireError as e:
            return InstallResult(success=False, error=str(e))

        if source is None:
            source = BundleSource(
                type=SourceType.LOCAL,
                location=str(Path(path).resolve()),
            )
        source.plugin = plugin

        # Reinstalling replaces the bundle's files in place
        existing = self.index.get(bundle.name)

        validation = None
        if self.validate:
            validation = self.validator.validate(bundle)
            if not validation.valid:
                error_msg = "; ".join(str(issue) for issue in validation.errors)
                return InstallResult(
                    success=False,
                    error=f"Validation failed: {error_msg}",
                    validation=validation,
                )
            if self.strict and validation.warnings:
                return InstallResult(
                    success=False,
                    error=(
                        "Validation warnings (strict mode): "
                        f"{'; '.join(str(w) for w in validation.warnings)}"
                    ),
                    validation=validation,
                )

        plan = self.plan_files(bundle)
        if not plan:
            return InstallResult(
                success=False,
                error=f"Bundle '{bundle.name}' has no agents, commands or skills to install",
                validation=validation,
            )

        conflicts = self._find_conflicts(bundle.name, plan)
        if conflicts:
            return InstallResult(
                success=False,
                error=f"{len(conflicts)} file(s) already exist; use --force to overwrite",
                validation=validation,
                conflicts=conflicts,
            )

        installed_files = []
        created = []
        try:
            for src, dest in plan:
                dest.parent.mkdir(parents=True, exist_ok=True)
                if not dest.exists():
                    created.append(str(dest))
                shutil.copy2(src, dest)
                installed_files.append(str(dest.resolve()))
        except OSError as e:
            log.error("bundle_install_failed", name=bundle.name, error=str(e))
            # Only files this attempt created; replaced files stay in place
            self._remove_files(created)
            return InstallResult(success=False, error=f"Install failed: {e}", validation=validation)

        self._release_files(bundle.name, installed_files)

        if existing:
            stale = [f for f in existing.files if f not in installed_files]
            self._remove_files(stale)
            source.installed_at = existing.source.installed_at
            source.updated_at = datetime.now()
        source.installed_at = source.installed_at or datetime.now()

        record = InstalledBundle(
            name=bundle.name,
            version=bundle.version,
            description=bundle.description,
            source=source,
            install_dir=self.install_dir,
            files=installed_files,
            documents=self._document_names(bundle),
            pinned=existing.pinned if existing else False,
        )
        self.index.add(record)
        self.index.save()

        log.info(
            "bundle_reinstalled" if existing else "bundle_installed",
            name=bundle.name,
            files=len(installed_files),
            install_dir=str(self.install_dir),
            source=source.type.value,
        )

        warnings = [str(w) for w in validation.warnings] if validation else []
        return InstallResult(success=True, bundle=record, validation=validation, warnings=warnings)

    def install_from_git(
        self,
        url: str,
        ref: Optional[str] = None,
        plugin: Optional[str] = None,
    ) -> InstallResult:
        """Install a bundle from a git repository.

        Args:
            url: Git repository URL
            ref: Branch or tag to check out
            plugin: Marketplace entry to install (optional)

        Returns:
            InstallResult
        """
        try:
            subprocess.run(["git", "--version"], capture_output=True, check=True)
        except (subprocess.CalledProcessError, FileNotFoundError):
            return InstallResult(success=False, error="Git is not installed or not in PATH")

        with tempfile.TemporaryDirectory() as tmpdir:
            clone_path = Path(tmpdir) / "repo"

            cmd = ["git", "clone", "--depth", "1"]
            if ref:
                cmd.extend(["--branch", ref])
            cmd.extend([url, str(clone_path)])

            result = subprocess.run(cmd, capture_output=True, text=True)
            if result.returncode != 0:
                log.warning("git_clone_failed", url=url, stderr=result.stderr.strip())
                return InstallResult(
                    success=False,
                    error=f"Git clone failed: {result.stderr.strip()}",
                )

            source = BundleSource(type=SourceType.GIT, location=url, ref=ref)
            return self.install_from_path(clone_path, plugin=plugin, source=source)

    def uninstall(self, name: str) -> UninstallResult:
        """Uninstall a bundle.

        Args:
            name: Bundle name

        Returns:
            UninstallResult
        """
        self.index.load()

        record = self.index.get(name)
        if not record:
            return UninstallResult(
                success=False,
                name=name,
                error=f"Bundle '{name}' is not installed",
            )

        try:
            removed = self._remove_files(record.files)
        except OSError as e:
            return UninstallResult(success=False, name=name, error=f"Uninstall failed: {e}")

        self.index.remove(name)
        self.index.save()

        log.info("bundle_uninstalled", name=name, removed=removed)
        return UninstallResult(success=True, name=name, removed=removed)

    def update(self, name: Optional[str] = None) -> list[InstallResult]:
        """Reinstall bundles from their recorded sources.

        Args:
            name: Bundle name (or None for every unpinned git bundle)

        Returns:
            List of InstallResults for updated bundles
        """
        self.index.load()
        results = []

        if name:
            record = self.index.get(name)
            if not record:
                return [InstallResult(success=False, error=f"Bundle '{name}' is not installed")]
            records = [record]
        else:
            records = [b for b, _ in self.index.get_outdated()]

        for record in records:
            if record.pinned:
                log.info("bundle_update_skipped_pinned", name=record.name)
                continue

            # The old files stay until the new revision is installed over them
            installer = self._for_install_dir(record.install_dir)
            source = record.source
            if source.type == SourceType.GIT:
                result = installer.install_from_git(
                    source.location, ref=source.ref, plugin=source.plugin
                )
            else:
                result = installer.install_from_path(Path(source.location), plugin=source.plugin)

            if not result.success:
                log.warning("bundle_update_failed", name=record.name, error=result.error)
            results.append(result)

        return results

    def plan_files(self, bundle: Bundle) -> list[tuple[Path, Path]]:
        """Work out which files to copy where.

        Agents and commands keep their path below ``agents/`` or
        ``commands/``. A directory-form skill is copied whole; a flat
        ``skills/x.md`` becomes ``skills/x/SKILL.md``. Files registered in
        plugin.json outside those directories are placed by field.

        Args:
            bundle: Opened bundle

        Returns:
            List of (source, destination) pairs
        """
        plan: list[tuple[Path, Path]] = []
        planned_sources: set[Path] = set()

        def add(src: Path, dest: Path) -> None:
            if src in planned_sources:
                return
            planned_sources.add(src)
            plan.append((src, dest))

        for doc in bundle.documents:
            subdir = INSTALL_DIRS.get(doc.kind)
            parts = doc.rel_path.split("/")
            if subdir is None or parts[0] != subdir:
                continue

            if doc.kind == DocumentKind.SKILL:
                if doc.path.name == SKILL_FILE:
                    skill_dir = doc.path.parent
                    for src in sorted(skill_dir.rglob("*")):
                        rel = src.relative_to(skill_dir)
                        if src.is_file() and not any(p.startswith(".") for p in rel.parts):
                            add(src, self.install_dir / subdir / skill_dir.name / rel)
                else:
                    add(doc.path, self.install_dir / subdir / doc.path.stem / SKILL_FILE)
            else:
                add(doc.path, self.install_dir / doc.rel_path)

        if bundle.plugin:
            for field_name in ("agents", "commands"):
                for ref in getattr(bundle.plugin, field_name):
                    src = bundle.resolve(ref)
                    if src.is_file() and bundle.contains(src):
                        add(src, self.install_dir / field_name / src.name)

        return plan

    def _select_plugin(self, bundle: Bundle, plugin: str) -> Bundle:
        """Open the bundle a marketplace entry points at."""
        if not bundle.marketplace:
            raise QuireError(f"{bundle.root} has no marketplace.json to pick '{plugin}' from")
        entry = bundle.marketplace.get_plugin(plugin)
        if entry is None:
            raise QuireError(f"Plugin '{plugin}' is not listed in marketplace.json")
        path = entry.local_path(bundle.root)
        if path is None:
            raise QuireError(f"Plugin '{plugin}' has a remote source; install it directly")
        if not bundle.contains(path):
            raise QuireError(f"Plugin '{plugin}' source points outside the marketplace")
        return Bundle.open(path)

    def _find_conflicts(self, name: str, plan: list[tuple[Path, Path]]) -> list[str]:
        if self.force:
            return []
        conflicts = []
        for _, dest in plan:
            if not dest.exists():
                continue
            owner = self.index.owner_of(dest)
            if owner == name:
                continue
            conflicts.append(str(dest) + (f" (owned by {owner})" if owner else ""))
        return conflicts

    def _release_files(self, name: str, files: list[str]) -> None:
        """Drop overwritten files from the records of their previous owners."""
        taken = set(files)
        for other in self.index.get_all():
            if other.name == name:
                continue
            kept = [f for f in other.files if f not in taken]
            if len(kept) != len(other.files):
                log.info(
                    "bundle_files_taken_over",
                    name=name,
                    previous_owner=other.name,
                    files=len(other.files) - len(kept),
                )
                other.files = kept

    def _for_install_dir(self, install_dir: Path) -> "BundleInstaller":
        if Path(install_dir) == self.install_dir:
            return self
        return BundleInstaller(
            install_dir=install_dir,
            index=self.index,
            validate=self.validate,
            strict=self.strict,
            force=self.force,
            validator=self.validator,
        )

    def _remove_files(self, files: list[str]) -> int:
        """Delete installed files and prune directories left empty."""
        removed = 0
        parents: set[Path] = set()
        for file_path in files:
            path = Path(file_path)
            if path.exists():
                path.unlink()
                removed += 1
                log.debug("bundle_file_removed", path=file_path)
            parents.add(path.parent)

        stop = self.install_dir.resolve()
        for parent in sorted(parents, key=lambda p: len(p.parts), reverse=True):
            current = parent
            while current != stop and stop in current.parents:
                if not current.exists() or any(current.iterdir()):
                    break
                current.rmdir()
                current = current.parent
        return removed

    def _document_names(self, bundle: Bundle) -> dict[str, list[str]]:
        names: dict[str, list[str]] = {}
        for doc in bundle.documents:
            subdir = INSTALL_DIRS.get(doc.kind)
            if subdir and doc.rel_path.split("/")[0] == subdir:
                names.setdefault(doc.kind.value, []).append(doc.name)
        return names
