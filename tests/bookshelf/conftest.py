"""
Fixtures for bookshelf tests.

Upstream book repositories are real temporary git repositories. The book
compiler is a small Python script standing in for `mdbook build`: it writes
<build-dir>/<title>.epub whose content depends on the README and on the
BOOK_FLAVOR environment variable, and fails when FAIL_BUILD is set.
"""

import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

FAKE_COMPILER = textwrap.dedent(
    """
    import os
    import pathlib
    import sys

    if os.environ.get("FAIL_BUILD"):
        print("simulated compiler failure", file=sys.stderr)
        sys.exit(3)

    title = os.environ.get("MDBOOK_BOOK__TITLE", "Hello Rust")
    out = pathlib.Path(os.environ.get("MDBOOK_BUILD__BUILD_DIR", "book"))
    out.mkdir(parents=True, exist_ok=True)
    text = pathlib.Path("README.md").read_text()
    flavor = os.environ.get("BOOK_FLAVOR", "plain")
    (out / f"{title}.epub").write_text(f"EPUB[{flavor}]\\n{text}")
    """
)


def git(repo_path: Path, *args: str) -> str:
    """Run git in repo_path and return stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=repo_path,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


class Upstream:
    """A local upstream book repository."""

    def __init__(self, path: Path):
        self.path = path

    @property
    def url(self) -> str:
        return str(self.path)

    def commit(self, readme: str, message: str = "commit", amend: bool = False) -> str:
        (self.path / "README.md").write_text(readme)
        git(self.path, "add", ".")
        args = ["commit", "-q", "-m", message]
        if amend:
            args.append("--amend")
        git(self.path, *args)
        return self.head()

    def head(self) -> str:
        return git(self.path, "rev-parse", "HEAD")


@pytest.fixture
def run_git():
    """The git helper, for tests that poke at repositories directly."""
    return git


@pytest.fixture
def make_upstream(tmp_path):
    """
    Factory creating upstream repositories with one initial commit.

    Usage:
        upstream = make_upstream("guide", readme="# Guide")
    """

    def _make(name: str, readme: str = "# Book\n") -> Upstream:
        repo_path = tmp_path / "upstream" / name
        repo_path.mkdir(parents=True)
        git(repo_path, "init", "-q")
        git(repo_path, "symbolic-ref", "HEAD", "refs/heads/main")
        git(repo_path, "config", "user.name", "Test User")
        git(repo_path, "config", "user.email", "test@example.com")
        git(repo_path, "config", "commit.gpgsign", "false")
        upstream = Upstream(repo_path)
        upstream.commit(readme, "initial")
        return upstream

    return _make


@pytest.fixture
def compiler_command(tmp_path) -> list[str]:
    """argv of the fake book compiler."""
    script = tmp_path / "fake_mdbook.py"
    script.write_text(FAKE_COMPILER)
    return [sys.executable, str(script)]
