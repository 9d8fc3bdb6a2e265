"""Tests for the build driver."""

import os
import sys

import pytest

from bookshelf.builder import book_setting, build, find_artifact, parse_command
from bookshelf.models import SyncResult
from bookshelf.types import BuildError


@pytest.fixture
def book_root(tmp_path):
    root = tmp_path / "work" / "guide"
    root.mkdir(parents=True)
    (root / "README.md").write_text("# Guide\n")
    (root / "book.toml").write_text('[book]\ntitle = "Hello Rust"\n')
    return root


@pytest.fixture
def sync_result(book_root):
    return SyncResult(path=book_root, revision="a" * 40, last_modified="2024-01-01T00:00:00+00:00")


@pytest.fixture
def dest(tmp_path):
    return tmp_path / "out"


def test_build_places_artifact(sync_result, dest, compiler_command):
    artifact = build(
        sync_result,
        {},
        dest,
        artifact_name="guide.epub",
        command=compiler_command,
    )

    assert artifact.path == dest / "guide.epub"
    assert artifact.path.read_text() == "EPUB[plain]\n# Guide\n"
    assert artifact.size == artifact.path.stat().st_size
    assert artifact.title == "Hello Rust"
    # Only the artifact, no temporary files
    assert [p.name for p in dest.iterdir()] == ["guide.epub"]


def test_env_overrides_reach_compiler(sync_result, dest, compiler_command):
    artifact = build(
        sync_result,
        {"BOOK_FLAVOR": "spicy"},
        dest,
        artifact_name="guide.epub",
        command=compiler_command,
    )

    assert artifact.path.read_text().startswith("EPUB[spicy]")


def test_env_overrides_do_not_leak(sync_result, dest, compiler_command, monkeypatch):
    """Test that one build's overrides are invisible to the next build and to this process."""
    monkeypatch.delenv("BOOK_FLAVOR", raising=False)

    build(sync_result, {"BOOK_FLAVOR": "spicy"}, dest, artifact_name="a.epub", command=compiler_command)
    second = build(sync_result, {}, dest, artifact_name="b.epub", command=compiler_command)

    assert "BOOK_FLAVOR" not in os.environ
    assert second.path.read_text().startswith("EPUB[plain]")


def test_override_wins_over_process_environment(sync_result, dest, compiler_command, monkeypatch):
    monkeypatch.setenv("BOOK_FLAVOR", "from-process")

    artifact = build(
        sync_result,
        {"BOOK_FLAVOR": "from-source"},
        dest,
        artifact_name="guide.epub",
        command=compiler_command,
    )

    assert artifact.path.read_text().startswith("EPUB[from-source]")


def test_title_override_from_env(sync_result, dest, compiler_command):
    artifact = build(
        sync_result,
        {"MDBOOK_BOOK__TITLE": "Renamed"},
        dest,
        artifact_name="guide.epub",
        command=compiler_command,
    )

    assert artifact.title == "Renamed"


def test_custom_build_dir(sync_result, book_root, dest, compiler_command):
    artifact = build(
        sync_result,
        {"MDBOOK_BUILD__BUILD_DIR": "target/book"},
        dest,
        artifact_name="guide.epub",
        command=compiler_command,
    )

    assert (book_root / "target" / "book" / "Hello Rust.epub").exists()
    assert artifact.size > 0


def test_folder_selects_book_root(tmp_path, dest, compiler_command):
    repo = tmp_path / "repo"
    (repo / "docs").mkdir(parents=True)
    (repo / "docs" / "README.md").write_text("nested\n")
    sync_result = SyncResult(path=repo, revision="b" * 40, last_modified="")

    artifact = build(
        sync_result,
        {},
        dest,
        artifact_name="nested.epub",
        folder="docs",
        command=compiler_command,
    )

    assert artifact.path.read_text() == "EPUB[plain]\nnested\n"
    assert artifact.title is None


def test_compiler_failure_raises(sync_result, dest, compiler_command):
    with pytest.raises(BuildError) as exc_info:
        build(
            sync_result,
            {"FAIL_BUILD": "1"},
            dest,
            artifact_name="guide.epub",
            command=compiler_command,
            source_id="guide",
        )

    assert exc_info.value.source_id == "guide"
    assert "status 3" in exc_info.value.message
    assert "simulated compiler failure" in exc_info.value.message
    assert not (dest / "guide.epub").exists()


def test_no_artifact_raises(sync_result, dest):
    with pytest.raises(BuildError, match="produced no .epub"):
        build(
            sync_result,
            {},
            dest,
            artifact_name="guide.epub",
            command=[sys.executable, "-c", "pass"],
        )


def test_stale_artifact_is_not_reused(sync_result, book_root, dest):
    """Test that an EPUB left over from an earlier build does not count as output."""
    (book_root / "book").mkdir()
    (book_root / "book" / "Hello Rust.epub").write_text("old")

    with pytest.raises(BuildError, match="produced no"):
        build(
            sync_result,
            {},
            dest,
            artifact_name="guide.epub",
            command=[sys.executable, "-c", "pass"],
        )


def test_missing_compiler_raises(sync_result, dest):
    with pytest.raises(BuildError, match="not found"):
        build(
            sync_result,
            {},
            dest,
            artifact_name="guide.epub",
            command=["definitely-not-a-real-mdbook-binary"],
        )


def test_timeout_raises(sync_result, dest):
    with pytest.raises(BuildError, match="timed out"):
        build(
            sync_result,
            {},
            dest,
            artifact_name="guide.epub",
            command=[sys.executable, "-c", "import time; time.sleep(5)"],
            timeout=0.5,
        )


def test_unwritable_destination_raises(sync_result, tmp_path, compiler_command):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")

    with pytest.raises(BuildError, match="could not write artifact"):
        build(
            sync_result,
            {},
            blocker / "out",
            artifact_name="guide.epub",
            command=compiler_command,
        )


def test_missing_book_root_raises(tmp_path, dest, compiler_command):
    sync_result = SyncResult(path=tmp_path / "repo", revision="c" * 40, last_modified="")

    with pytest.raises(BuildError, match="does not exist"):
        build(sync_result, {}, dest, artifact_name="x.epub", folder="docs", command=compiler_command)


class TestHelpers:
    def test_parse_command_string(self):
        assert parse_command("mdbook build --open") == ["mdbook", "build", "--open"]

    def test_parse_command_default(self):
        assert parse_command(None) == ["mdbook", "build"]

    def test_book_setting_env_wins(self, book_root):
        assert book_setting(book_root, {}, "book", "title") == "Hello Rust"
        assert book_setting(book_root, {"MDBOOK_BOOK__TITLE": "X"}, "book", "title") == "X"
        assert book_setting(book_root, {}, "build", "build-dir") is None

    def test_find_artifact_prefers_title(self, tmp_path):
        out = tmp_path / "book"
        (out / "epub").mkdir(parents=True)
        (out / "epub" / "Another.epub").write_text("x")
        (out / "epub" / "Hello Rust.epub").write_text("y")

        assert find_artifact(out, "Hello Rust") == out / "epub" / "Hello Rust.epub"
        assert find_artifact(out, None) == out / "epub" / "Another.epub"
        assert find_artifact(tmp_path / "missing", None) is None
