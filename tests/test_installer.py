"""Tests for the bundle installer."""

import shutil
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from quire.lint import BundleValidator
from quire.marketplace.index import InstallIndex, SourceType
from quire.marketplace.installer import BundleInstaller

UNKNOWN_MODEL_AGENT = "---\nname: a\ndescription: A\nmodel: gpt-4\n---\nBody"


@pytest.fixture
def installer(install_env):
    """Installer writing into temporary directories."""
    install_dir, data_dir = install_env
    return BundleInstaller(install_dir=install_dir, index=InstallIndex(data_dir))


def _fake_git(bundle_root: Path, fail: bool = False):
    """subprocess.run replacement that "clones" by copying a local bundle."""
    calls = []

    def run(cmd, **kwargs):
        calls.append(cmd)
        if cmd[:2] == ["git", "--version"]:
            return subprocess.CompletedProcess(cmd, 0, stdout="git version 2.43.0", stderr="")
        if fail:
            return subprocess.CompletedProcess(cmd, 128, stdout="", stderr="fatal: repository not found")
        shutil.copytree(bundle_root, cmd[-1])
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    return run, calls


class TestDetectSourceType:
    """Tests for source detection."""

    def test_local_path(self, installer, sample_bundle):
        """Existing directories are local sources."""
        source_type, location = installer.detect_source_type(str(sample_bundle))

        assert source_type == SourceType.LOCAL
        assert location == str(sample_bundle.resolve())

    def test_github_shorthand(self, installer):
        """owner/repo expands to a GitHub URL."""
        assert installer.detect_source_type("acme/review-kit") == (
            SourceType.GIT,
            "https://github.com/acme/review-kit.git",
        )

    def test_git_urls(self, installer):
        """Git URLs are recognised and normalised."""
        assert installer.detect_source_type("git@github.com:acme/kit.git")[0] == SourceType.GIT
        assert installer.detect_source_type("https://example.com/kit.git")[0] == SourceType.GIT
        assert installer.detect_source_type("https://gitlab.com/acme/kit/") == (
            SourceType.GIT,
            "https://gitlab.com/acme/kit.git",
        )

    def test_unknown_is_local(self, installer):
        """Anything else is treated as a (missing) local path."""
        assert installer.detect_source_type("./missing-dir") == (SourceType.LOCAL, "./missing-dir")


class TestInstallFromPath:
    """Tests for installing local bundles."""

    def test_install_layout(self, installer, sample_bundle, install_env):
        """Agents, commands and whole skill directories are copied."""
        install_dir, _ = install_env
        result = installer.install(str(sample_bundle))

        assert result.success, result.error
        assert (install_dir / "agents" / "code-reviewer.md").exists()
        assert (install_dir / "agents" / "sql-tuner.md").exists()
        assert (install_dir / "commands" / "review.md").exists()
        assert (install_dir / "skills" / "mysql-tuning" / "SKILL.md").exists()
        assert (install_dir / "skills" / "mysql-tuning" / "reference.md").exists()
        # Rules and meta files are not installed
        assert not (install_dir / "rules").exists()
        assert not (install_dir / "README.md").exists()

        record = result.bundle
        assert record.name == "review-kit"
        assert record.version == "1.0.0"
        assert len(record.files) == 5
        assert record.documents == {
            "agent": ["code-reviewer", "sql-tuner"],
            "command": ["review"],
            "skill": ["mysql-tuning"],
        }
        assert record.source.type == SourceType.LOCAL
        assert record.source.installed_at is not None
        assert record.source.updated_at is None

    def test_recorded_in_index(self, installer, sample_bundle, install_env):
        """The install is saved to the index file."""
        _, data_dir = install_env
        installer.install(str(sample_bundle))

        index = InstallIndex(data_dir)
        assert index.exists("review-kit")
        assert index.get("review-kit").source.location == str(sample_bundle.resolve())

    def test_flat_skill_becomes_directory(self, installer, make_bundle, install_env):
        """skills/x.md is installed as skills/x/SKILL.md."""
        install_dir, _ = install_env
        root = make_bundle({
            ".claude-plugin/plugin.json": {"name": "kit"},
            "skills/quick-fix.md": "---\nname: quick-fix\ndescription: Fixes\n---\nBody",
        })
        result = installer.install(str(root))

        assert result.success, result.error
        assert (install_dir / "skills" / "quick-fix" / "SKILL.md").exists()

    def test_missing_path(self, installer, temp_dir):
        """A missing directory fails without raising."""
        result = installer.install(str(temp_dir / "nope"))

        assert not result.success
        assert result.error

    def test_validation_failure(self, installer, make_bundle):
        """Lint errors stop the install."""
        root = make_bundle({
            ".claude-plugin/plugin.json": {"name": "kit", "agents": ["./agents/missing.md"]},
            "agents/a.md": "---\nname: a\ndescription: A\n---\nBody",
        })
        result = installer.install(str(root))

        assert not result.success
        assert result.error.startswith("Validation failed")
        assert result.validation is not None

    def test_validation_can_be_skipped(self, install_env, make_bundle):
        """validate=False installs bundles with lint errors."""
        install_dir, data_dir = install_env
        root = make_bundle({
            ".claude-plugin/plugin.json": {"name": "kit", "agents": ["./agents/missing.md"]},
            "agents/a.md": "---\nname: a\ndescription: A\n---\nBody",
        })
        installer = BundleInstaller(install_dir=install_dir, index=InstallIndex(data_dir), validate=False)

        assert installer.install(str(root)).success

    def test_warnings_allowed_by_default(self, installer, make_bundle):
        """Lint warnings are reported but do not block the install."""
        root = make_bundle({
            ".claude-plugin/plugin.json": {"name": "kit"},
            "agents/a.md": UNKNOWN_MODEL_AGENT,
        })
        result = installer.install(str(root))

        assert result.success, result.error
        assert any("gpt-4" in w for w in result.warnings)

    def test_strict_refuses_warnings(self, install_env, make_bundle):
        """In strict mode lint warnings block the install."""
        install_dir, data_dir = install_env
        root = make_bundle({
            ".claude-plugin/plugin.json": {"name": "kit"},
            "agents/a.md": UNKNOWN_MODEL_AGENT,
        })
        installer = BundleInstaller(install_dir=install_dir, index=InstallIndex(data_dir), strict=True)

        result = installer.install(str(root))

        assert not result.success
        assert "gpt-4" in result.error
        assert not (install_dir / "agents" / "a.md").exists()
        assert not installer.index.exists("kit")

    def test_strict_with_lenient_validator(self, install_env, make_bundle):
        """Strict installs refuse warnings even from a non-strict validator."""
        install_dir, data_dir = install_env
        root = make_bundle({
            ".claude-plugin/plugin.json": {"name": "kit"},
            "agents/a.md": UNKNOWN_MODEL_AGENT,
        })
        installer = BundleInstaller(
            install_dir=install_dir,
            index=InstallIndex(data_dir),
            strict=True,
            validator=BundleValidator(strict=False),
        )

        result = installer.install(str(root))

        assert not result.success
        assert result.error.startswith("Validation warnings (strict mode)")
        assert result.validation.valid

    def test_nothing_to_install(self, installer, make_bundle):
        """Bundles with only rules or meta documents are refused."""
        root = make_bundle({
            ".claude-plugin/plugin.json": {"name": "docs-only"},
            "rules/style.md": "# Style",
        })
        result = installer.install(str(root))

        assert not result.success
        assert "no agents, commands or skills" in result.error

    def test_conflict_with_unowned_file(self, installer, sample_bundle, install_env):
        """Existing files are never overwritten silently."""
        install_dir, _ = install_env
        existing = install_dir / "agents" / "sql-tuner.md"
        existing.parent.mkdir(parents=True)
        existing.write_text("mine")

        result = installer.install(str(sample_bundle))

        assert not result.success
        assert len(result.conflicts) == 1
        assert "sql-tuner.md" in result.conflicts[0]
        assert existing.read_text() == "mine"
        assert not (install_dir / "agents" / "code-reviewer.md").exists()

    def test_conflict_with_other_bundle(self, installer, sample_bundle, make_bundle):
        """Files owned by another bundle are reported with their owner."""
        installer.install(str(sample_bundle))
        other = make_bundle({
            ".claude-plugin/plugin.json": {"name": "other-kit"},
            "agents/sql-tuner.md": "---\nname: sql-tuner\ndescription: Another\n---\nBody",
        })
        result = installer.install(str(other))

        assert not result.success
        assert "owned by review-kit" in result.conflicts[0]

    def test_force_overwrites(self, install_env, sample_bundle):
        """force replaces untracked files."""
        install_dir, data_dir = install_env
        existing = install_dir / "agents" / "sql-tuner.md"
        existing.parent.mkdir(parents=True)
        existing.write_text("mine")
        installer = BundleInstaller(install_dir=install_dir, index=InstallIndex(data_dir), force=True)

        result = installer.install(str(sample_bundle))

        assert result.success
        assert existing.read_text() != "mine"

    def test_force_takes_over_ownership(self, install_env, sample_bundle, make_bundle):
        """A forced overwrite moves the file to the new bundle's record."""
        install_dir, data_dir = install_env
        index = InstallIndex(data_dir)
        BundleInstaller(install_dir=install_dir, index=index).install(str(sample_bundle))
        other = make_bundle({
            ".claude-plugin/plugin.json": {"name": "other-kit"},
            "agents/code-reviewer.md": "---\nname: code-reviewer\ndescription: Other\n---\nOther body",
        })
        forced = BundleInstaller(install_dir=install_dir, index=index, force=True)

        assert forced.install(str(other)).success

        target = install_dir / "agents" / "code-reviewer.md"
        assert index.owner_of(target) == "other-kit"
        assert str(target.resolve()) not in index.get("review-kit").files
        assert len(index.get("review-kit").files) == 4
        assert InstallIndex(data_dir).owner_of(target) == "other-kit"

        forced.uninstall("review-kit")

        assert target.exists()
        assert "Other body" in target.read_text()
        assert not (install_dir / "agents" / "sql-tuner.md").exists()


class TestReinstall:
    """Tests for installing a bundle that is already installed."""

    def test_reinstall_replaces_files(self, installer, sample_bundle, install_env):
        """A second install updates files in place and drops removed ones."""
        install_dir, _ = install_env
        first = installer.install(str(sample_bundle))
        installed_at = first.bundle.source.installed_at

        (sample_bundle / "agents" / "sql-tuner.md").write_text(
            "---\nname: sql-tuner\ndescription: Tunes slow queries\n---\nSecond revision\n"
        )
        (sample_bundle / "commands" / "review.md").unlink()
        plugin = sample_bundle / ".claude-plugin" / "plugin.json"
        plugin.write_text(plugin.read_text().replace('"./commands/review.md"', ""))

        result = installer.install(str(sample_bundle))

        assert result.success, result.error
        assert "Second revision" in (install_dir / "agents" / "sql-tuner.md").read_text()
        assert not (install_dir / "commands" / "review.md").exists()
        assert not (install_dir / "commands").exists()
        record = installer.index.get("review-kit")
        assert len(record.files) == 4
        assert "command" not in record.documents
        assert record.source.installed_at == installed_at
        assert record.source.updated_at is not None

    def test_reinstall_ignores_force(self, install_env, sample_bundle):
        """The bundle's own files never count as conflicts."""
        install_dir, data_dir = install_env
        installer = BundleInstaller(install_dir=install_dir, index=InstallIndex(data_dir), force=False)
        installer.install(str(sample_bundle))

        result = installer.install(str(sample_bundle))

        assert result.success, result.error
        assert result.conflicts == []
        assert len(installer.index.get_all()) == 1

    def test_reinstall_keeps_pin(self, installer, sample_bundle):
        """An explicit reinstall keeps the bundle's pinned flag."""
        installer.install(str(sample_bundle))
        installer.index.set_pinned("review-kit", True)
        installer.index.save()

        result = installer.install(str(sample_bundle))

        assert result.success
        assert installer.index.get("review-kit").pinned

    def test_failed_reinstall_keeps_old_files(self, installer, sample_bundle, install_env):
        """A revision that fails lint leaves the installed one alone."""
        install_dir, _ = install_env
        installer.install(str(sample_bundle))
        (sample_bundle / "agents" / "sql-tuner.md").write_text("---\nname: [broken\n---\nBody")

        result = installer.install(str(sample_bundle))

        assert not result.success
        assert "Tunes slow MySQL queries" in (install_dir / "agents" / "sql-tuner.md").read_text()
        assert len(installer.index.get("review-kit").files) == 5


class TestMarketplacePlugins:
    """Tests for picking a plugin out of a marketplace."""

    @pytest.fixture
    def marketplace(self, make_bundle):
        """Marketplace with one local and one remote plugin."""
        return make_bundle({
            ".claude-plugin/marketplace.json": {
                "name": "acme-market",
                "owner": {"name": "Acme"},
                "plugins": [
                    {"name": "sql-kit", "source": "./plugins/sql-kit"},
                    {"name": "remote", "source": {"source": "github", "repo": "acme/remote"}},
                ],
            },
            "plugins/sql-kit/.claude-plugin/plugin.json": {"name": "sql-kit", "version": "0.3.0"},
            "plugins/sql-kit/agents/sql-tuner.md": "---\nname: sql-tuner\ndescription: Tunes\n---\nBody",
        }, name="acme-market")

    def test_install_plugin(self, installer, marketplace, install_env):
        """The chosen entry is installed and remembered on the source."""
        install_dir, _ = install_env
        result = installer.install(str(marketplace), plugin="sql-kit")

        assert result.success, result.error
        assert result.bundle.name == "sql-kit"
        assert result.bundle.source.plugin == "sql-kit"
        assert result.bundle.source.location == str(marketplace.resolve())
        assert (install_dir / "agents" / "sql-tuner.md").exists()

    def test_unknown_plugin(self, installer, marketplace):
        """Entries missing from marketplace.json are refused."""
        result = installer.install(str(marketplace), plugin="missing")

        assert not result.success
        assert "not listed" in result.error

    def test_remote_plugin(self, installer, marketplace):
        """Remote entries must be installed from their own source."""
        result = installer.install(str(marketplace), plugin="remote")

        assert not result.success
        assert "remote source" in result.error

    def test_no_marketplace(self, installer, make_bundle):
        """Picking a plugin needs a marketplace.json."""
        root = make_bundle({"agents/a.md": "A"})
        result = installer.install(str(root), plugin="x")

        assert not result.success
        assert "no marketplace.json" in result.error


class TestUninstall:
    """Tests for uninstalling bundles."""

    def test_uninstall_removes_files(self, installer, sample_bundle, install_env):
        """Installed files go and empty directories are pruned."""
        install_dir, _ = install_env
        installer.install(str(sample_bundle))

        result = installer.uninstall("review-kit")

        assert result.success
        assert result.removed == 5
        assert not (install_dir / "skills" / "mysql-tuning").exists()
        assert not (install_dir / "agents").exists()
        assert install_dir.exists()
        assert not installer.index.exists("review-kit")

    def test_unrelated_files_kept(self, installer, sample_bundle, install_env):
        """Files the bundle does not own survive uninstall."""
        install_dir, _ = install_env
        installer.install(str(sample_bundle))
        mine = install_dir / "agents" / "mine.md"
        mine.write_text("mine")

        installer.uninstall("review-kit")

        assert mine.exists()
        assert not (install_dir / "agents" / "sql-tuner.md").exists()

    def test_not_installed(self, installer):
        """Unknown bundles give a failed result."""
        result = installer.uninstall("ghost")

        assert not result.success
        assert "not installed" in result.error


class TestUpdate:
    """Tests for updating bundles."""

    def test_update_local(self, installer, sample_bundle, install_env):
        """Changes in the source are picked up."""
        install_dir, _ = install_env
        installer.install(str(sample_bundle))
        first_installed = installer.index.get("review-kit").source.installed_at

        (sample_bundle / "agents" / "sql-tuner.md").write_text(
            "---\nname: sql-tuner\ndescription: Tunes slow queries\n---\nUpdated body\n"
        )
        results = installer.update("review-kit")

        assert len(results) == 1
        assert results[0].success, results[0].error
        assert "Updated body" in (install_dir / "agents" / "sql-tuner.md").read_text()
        record = installer.index.get("review-kit")
        assert record.source.installed_at == first_installed
        assert record.source.updated_at is not None

    def test_failed_update_keeps_install(self, installer, sample_bundle, install_env):
        """An update that fails leaves the installed bundle in place."""
        install_dir, data_dir = install_env
        installer.install(str(sample_bundle))
        (sample_bundle / "agents" / "sql-tuner.md").write_text("---\nname: [broken\n---\nBody")

        results = installer.update("review-kit")

        assert len(results) == 1
        assert not results[0].success
        assert (install_dir / "agents" / "code-reviewer.md").exists()
        assert (install_dir / "agents" / "sql-tuner.md").exists()
        assert InstallIndex(data_dir).exists("review-kit")
        assert len(InstallIndex(data_dir).get("review-kit").files) == 5

    def test_update_with_moved_source(self, installer, sample_bundle, install_env, temp_dir):
        """A source directory that is gone fails without uninstalling."""
        install_dir, _ = install_env
        installer.install(str(sample_bundle))
        sample_bundle.rename(temp_dir / "moved")

        results = installer.update("review-kit")

        assert not results[0].success
        assert (install_dir / "commands" / "review.md").exists()
        assert installer.index.exists("review-kit")

    def test_update_missing(self, installer):
        """Updating an unknown bundle reports a failure."""
        results = installer.update("ghost")

        assert len(results) == 1
        assert not results[0].success

    def test_pinned_skipped(self, installer, sample_bundle):
        """Pinned bundles are left alone."""
        installer.install(str(sample_bundle))
        installer.index.set_pinned("review-kit", True)
        installer.index.save()

        assert installer.update("review-kit") == []
        assert installer.index.exists("review-kit")

    def test_update_all_only_touches_git(self, installer, sample_bundle):
        """Without a name only git bundles are updated."""
        installer.install(str(sample_bundle))

        assert installer.update() == []

    def test_update_uses_recorded_install_dir(self, install_env, sample_bundle, temp_dir):
        """Bundles are updated in the directory they were installed into."""
        _, data_dir = install_env
        other_dir = temp_dir / "elsewhere"
        BundleInstaller(install_dir=other_dir, index=InstallIndex(data_dir)).install(str(sample_bundle))
        installer = BundleInstaller(install_dir=temp_dir / "default", index=InstallIndex(data_dir))

        results = installer.update("review-kit")

        assert results[0].success, results[0].error
        assert results[0].bundle.install_dir == other_dir
        assert not (temp_dir / "default").exists()


class TestInstallFromGit:
    """Tests for git installs with git mocked out."""

    def test_clone_and_install(self, installer, sample_bundle, install_env):
        """A shallow clone of the requested ref is installed."""
        install_dir, _ = install_env
        run, calls = _fake_git(sample_bundle)

        with patch("quire.marketplace.installer.subprocess.run", side_effect=run):
            result = installer.install("acme/review-kit", ref="v1.0.0")

        assert result.success, result.error
        clone = calls[-1]
        assert clone[:4] == ["git", "clone", "--depth", "1"]
        assert clone[4:6] == ["--branch", "v1.0.0"]
        assert clone[6] == "https://github.com/acme/review-kit.git"

        record = result.bundle
        assert record.source.type == SourceType.GIT
        assert record.source.ref == "v1.0.0"
        assert (install_dir / "agents" / "sql-tuner.md").exists()

    def test_clone_failure(self, installer, sample_bundle):
        """git's stderr is carried in the error."""
        run, _ = _fake_git(sample_bundle, fail=True)

        with patch("quire.marketplace.installer.subprocess.run", side_effect=run):
            result = installer.install("acme/missing")

        assert not result.success
        assert "repository not found" in result.error

    def test_git_missing(self, installer, mocker):
        """A missing git binary is reported, not raised."""
        run = mocker.patch("quire.marketplace.installer.subprocess.run", side_effect=FileNotFoundError)

        result = installer.install_from_git("https://github.com/acme/kit.git")

        assert not result.success
        assert "Git is not installed" in result.error
        run.assert_called_once()

    def test_update_all_reinstalls_git(self, installer, sample_bundle):
        """update() with no name reclones every git bundle."""
        run, calls = _fake_git(sample_bundle)

        with patch("quire.marketplace.installer.subprocess.run", side_effect=run):
            installer.install("acme/review-kit")
            results = installer.update()

        assert len(results) == 1
        assert results[0].success, results[0].error
        assert len([c for c in calls if c[1] == "clone"]) == 2

    def test_failed_clone_keeps_install(self, installer, sample_bundle, install_env):
        """A clone failure during update leaves the old files in place."""
        install_dir, _ = install_env
        run, _ = _fake_git(sample_bundle)
        with patch("quire.marketplace.installer.subprocess.run", side_effect=run):
            installer.install("acme/review-kit")

        failing, _ = _fake_git(sample_bundle, fail=True)
        with patch("quire.marketplace.installer.subprocess.run", side_effect=failing):
            results = installer.update("review-kit")

        assert not results[0].success
        assert (install_dir / "agents" / "sql-tuner.md").exists()
        assert installer.index.get("review-kit").source.type == SourceType.GIT
