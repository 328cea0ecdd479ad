"""Tests for opening bundles and syncing plugin.json."""

import json

import pytest

from quire.bundle import Bundle, apply_sync, plan_sync
from quire.bundle.manifest import load_plugin_manifest
from quire.documents import DocumentKind
from quire.errors import BundleNotFoundError, ManifestError


class TestBundleOpen:
    """Tests for Bundle.open and its accessors."""

    def test_open_sample(self, sample_bundle):
        """Name and version come from plugin.json."""
        bundle = Bundle.open(sample_bundle)

        assert bundle.name == "review-kit"
        assert bundle.version == "1.0.0"
        assert bundle.description == "Code review agents"
        assert bundle.plugin is not None
        assert bundle.marketplace is not None
        assert sorted(d.name for d in bundle.agents) == ["code-reviewer", "sql-tuner"]
        assert [d.name for d in bundle.commands] == ["review"]
        assert [d.name for d in bundle.skills] == ["mysql-tuning"]
        assert [d.name for d in bundle.rules] == ["python-style"]
        assert len(bundle.meta) == 2

    def test_missing_root(self, temp_dir):
        """A missing root raises BundleNotFoundError."""
        with pytest.raises(BundleNotFoundError):
            Bundle.open(temp_dir / "missing")

    def test_broken_manifest_is_recorded(self, make_bundle):
        """A broken plugin.json does not stop the bundle from opening."""
        root = make_bundle({
            ".claude-plugin/plugin.json": "{not json",
            "agents/a.md": "---\nname: a\ndescription: A\n---\nBody",
        })
        bundle = Bundle.open(root)

        assert bundle.plugin is None
        assert "invalid JSON" in bundle.plugin_error
        assert len(bundle.agents) == 1

    def test_name_falls_back_to_directory(self, make_bundle):
        """Bundles without manifests are named after their directory."""
        root = make_bundle({"agents/a.md": "Body"}, name="loose-prompts")
        bundle = Bundle.open(root)

        assert bundle.name == "loose-prompts"
        assert bundle.version == ""

    def test_name_from_marketplace(self, make_bundle):
        """A lone marketplace.json supplies the name and version."""
        root = make_bundle({
            ".claude-plugin/marketplace.json": {
                "name": "acme-market",
                "metadata": {"version": "3.1.0"},
                "plugins": [],
            },
        })
        bundle = Bundle.open(root)

        assert bundle.name == "acme-market"
        assert bundle.version == "3.1.0"

    def test_ignore(self, make_bundle):
        """Ignore globs are passed through to discovery."""
        root = make_bundle({"agents/a.md": "A", "drafts/b.md": "B"})
        bundle = Bundle.open(root, ignore=["drafts/*"])

        assert [d.rel_path for d in bundle.documents] == ["agents/a.md"]


class TestBundleLookup:
    """Tests for get, resolve, contains and stats."""

    def test_get_by_name(self, sample_bundle):
        """Documents are found by name, optionally per kind."""
        bundle = Bundle.open(sample_bundle)

        assert bundle.get("sql-tuner").rel_path == "agents/sql-tuner.md"
        assert bundle.get("sql-tuner", DocumentKind.SKILL) is None
        assert bundle.get("nope") is None

    def test_get_by_path(self, sample_bundle):
        """Documents are found by bundle-relative path."""
        bundle = Bundle.open(sample_bundle)

        assert bundle.get("./commands/review.md").name == "review"
        assert bundle.get("rules/python-style.md").kind == DocumentKind.RULE

    def test_resolve_and_contains(self, sample_bundle):
        """Manifest paths resolve inside the bundle root."""
        bundle = Bundle.open(sample_bundle)

        target = bundle.resolve("./agents/sql-tuner.md")
        assert target == bundle.root / "agents" / "sql-tuner.md"
        assert bundle.contains(target)
        assert not bundle.contains(bundle.resolve("../elsewhere.md"))

    def test_stats(self, sample_bundle):
        """Stats count documents per kind."""
        stats = Bundle.open(sample_bundle).stats()

        assert stats["name"] == "review-kit"
        assert stats["total"] == 7
        assert stats["by_kind"]["agent"] == 2
        assert stats["by_kind"]["meta"] == 2
        assert stats["with_errors"] == 0
        assert stats["words"] > 0
        assert stats["has_plugin_manifest"]
        assert stats["marketplace_plugins"] == 1


class TestSync:
    """Tests for plan_sync and apply_sync."""

    def test_sample_in_sync(self, sample_bundle):
        """A lint-clean bundle needs no manifest changes."""
        plan = plan_sync(Bundle.open(sample_bundle))

        assert plan.in_sync
        assert not plan.create

    def test_detects_added_and_removed(self, make_bundle):
        """New files are added and missing entries dropped."""
        root = make_bundle({
            ".claude-plugin/plugin.json": {
                "name": "kit",
                "agents": ["./agents/a.md", "./agents/gone.md"],
            },
            "agents/a.md": "A",
            "agents/b.md": "B",
            "commands/run.md": "Run",
        })
        plan = plan_sync(Bundle.open(root))

        assert not plan.in_sync
        assert plan.fields["agents"].added == ["./agents/b.md"]
        assert plan.fields["agents"].removed == ["./agents/gone.md"]
        assert plan.fields["commands"].added == ["./commands/run.md"]

    def test_prefix_differences_are_not_changes(self, make_bundle):
        """agents/a.md and ./agents/a.md name the same file."""
        root = make_bundle({
            ".claude-plugin/plugin.json": {"name": "kit", "agents": ["agents/a.md"]},
            "agents/a.md": "A",
        })
        change = plan_sync(Bundle.open(root)).fields["agents"]

        assert change.added == []
        assert change.removed == []

    def test_apply_preserves_other_fields(self, make_bundle):
        """Syncing only rewrites the component lists."""
        root = make_bundle({
            ".claude-plugin/plugin.json": {
                "name": "kit",
                "version": "0.2.0",
                "hooks": {"Stop": []},
                "agents": [],
            },
            "agents/z.md": "Z",
            "agents/a.md": "A",
        })
        bundle = Bundle.open(root)
        apply_sync(bundle)

        manifest = load_plugin_manifest(bundle.plugin_manifest_path)
        assert manifest.agents == ["./agents/a.md", "./agents/z.md"]
        assert manifest.version == "0.2.0"
        assert manifest.extra["hooks"] == {"Stop": []}
        assert plan_sync(Bundle.open(root)).in_sync

    def test_apply_creates_manifest(self, make_bundle):
        """A bundle without plugin.json gets one."""
        root = make_bundle({"commands/run.md": "Run"}, name="fresh-kit")
        bundle = Bundle.open(root)
        plan = plan_sync(bundle)
        assert plan.create

        apply_sync(bundle, plan)

        data = json.loads(bundle.plugin_manifest_path.read_text())
        assert data["name"] == "fresh-kit"
        assert data["commands"] == ["./commands/run.md"]

    def test_nested_plugins_left_alone(self, make_bundle):
        """Documents of nested plugins are not registered at the root."""
        root = make_bundle({
            ".claude-plugin/plugin.json": {"name": "kit"},
            "plugins/sql/agents/tuner.md": "T",
        })
        plan = plan_sync(Bundle.open(root))

        assert plan.fields["agents"].expected == []

    def test_broken_manifest_raises(self, make_bundle):
        """An unreadable plugin.json is not overwritten."""
        root = make_bundle({".claude-plugin/plugin.json": "[1,"})

        with pytest.raises(ManifestError):
            plan_sync(Bundle.open(root))
