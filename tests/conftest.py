"""Shared test fixtures."""

import json
import pytest
import tempfile
from pathlib import Path


CODE_REVIEWER = """---
name: code-reviewer
description: Reviews pull requests for bugs and style problems
tools: Read, Grep, Glob
model: sonnet
---

# Code Reviewer

You are a senior code reviewer.

See the [MySQL guide](../skills/mysql-tuning/SKILL.md) for database changes.
"""

SQL_TUNER = """---
name: sql-tuner
description: Tunes slow MySQL queries
tools:
  - Read
  - Bash
model: opus
tags: [mysql, performance]
---

You are a MySQL performance specialist. Start from EXPLAIN output.
"""

REVIEW_COMMAND = """---
description: Review the current changes
allowed-tools: Bash(git diff:*), Read
---

Review $ARGUMENTS with the code-reviewer agent.
"""

MYSQL_SKILL = """---
name: mysql-tuning
description: MySQL index and query tuning guide
tags:
  - mysql
  - database
---

# MySQL Tuning

Read [the reference](reference.md) before changing indexes.

```sql
SELECT * FROM t WHERE [not](a-link.md);
```
"""

PYTHON_RULES = """# Python style

- Use type hints on public functions
- Prefer pathlib over os.path
"""


@pytest.fixture
def temp_dir():
    """Temporary directory for tests."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


def write_files(root: Path, files: dict) -> Path:
    """Write a mapping of relative path -> content under root.

    Dict and list values are written as JSON.
    """
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, (dict, list)):
            path.write_text(json.dumps(content, indent=2))
        else:
            path.write_text(content)
    return root


@pytest.fixture
def make_bundle(temp_dir):
    """Factory writing a bundle from a files mapping.

    Usage:
        root = make_bundle({"agents/a.md": "...", ".claude-plugin/plugin.json": {...}})
    """
    counter = {"n": 0}

    def build(files: dict, name: str = None) -> Path:
        counter["n"] += 1
        root = temp_dir / (name or f"bundle{counter['n']}")
        root.mkdir(parents=True, exist_ok=True)
        return write_files(root, files)

    return build


def bundle_files() -> dict:
    """Files of a small, lint-clean bundle."""
    return {
        ".claude-plugin/plugin.json": {
            "name": "review-kit",
            "version": "1.0.0",
            "description": "Code review agents",
            "author": {"name": "Acme"},
            "agents": ["./agents/code-reviewer.md", "./agents/sql-tuner.md"],
            "commands": ["./commands/review.md"],
        },
        ".claude-plugin/marketplace.json": {
            "name": "review-kit",
            "owner": {"name": "Acme"},
            "metadata": {"description": "Review tooling", "version": "1.0.0"},
            "plugins": [
                {
                    "name": "review-kit",
                    "source": "./",
                    "description": "Code review agents",
                    "version": "1.0.0",
                }
            ],
        },
        "agents/code-reviewer.md": CODE_REVIEWER,
        "agents/sql-tuner.md": SQL_TUNER,
        "commands/review.md": REVIEW_COMMAND,
        "skills/mysql-tuning/SKILL.md": MYSQL_SKILL,
        "skills/mysql-tuning/reference.md": "# Reference\n\nIndex notes.\n",
        "rules/python-style.md": PYTHON_RULES,
        "README.md": "# Review Kit\n\nStart with [the reviewer](agents/code-reviewer.md).\n",
    }


@pytest.fixture
def sample_files():
    """Files mapping of the lint-clean sample bundle."""
    return bundle_files()


@pytest.fixture
def sample_bundle(make_bundle):
    """Root of a small, lint-clean bundle."""
    return make_bundle(bundle_files(), name="review-kit")


@pytest.fixture
def install_env(temp_dir):
    """Separate install and data directories."""
    install_dir = temp_dir / "claude"
    data_dir = temp_dir / "data"
    return install_dir, data_dir
