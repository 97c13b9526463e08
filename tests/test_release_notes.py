"""Tests for release/notes.py module."""

import pytest

from kmod_imagegen.errors import RegistryCommandError, ReleaseNotesError
from kmod_imagegen.release.notes import (
    ReleaseNotesSynchronizer,
    document_name,
    normalize,
    render_release_notes,
)
from kmod_imagegen.registry.targets import PrivateEcrTarget, PublicRegistryTarget
from kmod_imagegen.types import KernelGroup, SyncStatus

TAG = PublicRegistryTarget("public.ecr.aws/x/kmod").kernel_tag


class MemoryStore:
    """Document store recording writes."""

    def __init__(self, documents: dict[str, str] | None = None) -> None:
        self.documents = dict(documents or {})
        self.writes: list[str] = []

    def read(self, name: str) -> str | None:
        return self.documents.get(name)

    def write(self, name: str, content: str) -> None:
        self.writes.append(name)
        self.documents[name] = content


@pytest.fixture
def groups() -> dict[str, KernelGroup]:
    return {
        "5.14.0-10": KernelGroup("5.14.0-10", {"4.17.0"}, "dtkB"),
        "5.14.0-9": KernelGroup("5.14.0-9", {"4.16.10", "4.16.9"}, "dtkA"),
    }


class TestRender:
    """Tests for render_release_notes function."""

    def test_content(self, groups: dict[str, KernelGroup]) -> None:
        text = render_release_notes(
            "1.0.0", groups, ["1.0.0-5.14.0-9"], TAG, repository="public.ecr.aws/x/kmod"
        )
        lines = text.splitlines()

        assert lines[0] == "# Neuron kernel module images: driver 1.0.0"
        assert "Repository: `public.ecr.aws/x/kmod`" in lines
        rows = [line for line in lines if line.startswith("| 5.14")]
        assert rows == [
            "| 5.14.0-9 | 4.16.9, 4.16.10 | `1.0.0-5.14.0-9` |",
            "| 5.14.0-10 | 4.17.0 | `1.0.0-5.14.0-10` (not published) |",
        ]
        assert text.endswith("\n")

    def test_deterministic(self, groups: dict[str, KernelGroup]) -> None:
        reordered = dict(reversed(list(groups.items())))
        tags = ["1.0.0-5.14.0-10", "1.0.0-5.14.0-9"]
        assert render_release_notes("1.0.0", groups, tags, TAG) == render_release_notes(
            "1.0.0", reordered, list(reversed(tags)), TAG
        )

    def test_no_repository_line(self, groups: dict[str, KernelGroup]) -> None:
        assert "Repository:" not in render_release_notes("1.0.0", groups, [], TAG)

    def test_tags_come_from_target(self, groups: dict[str, KernelGroup]) -> None:
        target = PrivateEcrTarget("42", "us-east-2", "kmod")
        published = [target.kernel_tag("1.0.0", "5.14.0-9")]
        text = render_release_notes("1.0.0", groups, published, target.kernel_tag)
        assert "| 5.14.0-9 | 4.16.9, 4.16.10 | `1.0.0-5.14.0-9` |" in text

    def test_custom_tag_scheme(self, groups: dict[str, KernelGroup]) -> None:
        def scheme(driver: str, kernel: str) -> str:
            return f"kmod-{driver}_{kernel}"

        text = render_release_notes("1.0.0", groups, ["kmod-1.0.0_5.14.0-10"], scheme)
        assert "| 5.14.0-10 | 4.17.0 | `kmod-1.0.0_5.14.0-10` |" in text
        assert "`kmod-1.0.0_5.14.0-9` (not published)" in text


class TestNormalize:
    """Tests for normalize function."""

    def test_line_endings_and_trailing_space(self) -> None:
        assert normalize("a  \r\nb\rc\n\n\n") == "a\nb\nc\n"

    def test_document_name(self) -> None:
        assert document_name("2.19.64.0") == "kmod-2.19.64.0"


class TestSynchronizer:
    """Tests for ReleaseNotesSynchronizer.sync."""

    def test_creates_then_unchanged(self, groups: dict[str, KernelGroup]) -> None:
        store = MemoryStore()
        sync = ReleaseNotesSynchronizer(store, lambda: ["1.0.0-5.14.0-9"], TAG)

        assert sync.sync("1.0.0", groups) is SyncStatus.UPDATED
        assert sync.sync("1.0.0", groups) is SyncStatus.UNCHANGED
        assert store.writes == ["kmod-1.0.0"]

    def test_whitespace_only_difference_is_unchanged(
        self, groups: dict[str, KernelGroup]
    ) -> None:
        rendered = render_release_notes("1.0.0", groups, [], TAG)
        store = MemoryStore({"kmod-1.0.0": rendered.replace("\n", "  \r\n") + "\r\n"})
        sync = ReleaseNotesSynchronizer(store, lambda: [], TAG)

        assert sync.sync("1.0.0", groups) is SyncStatus.UNCHANGED
        assert store.writes == []

    def test_newly_published_tag_updates(self, groups: dict[str, KernelGroup]) -> None:
        store = MemoryStore({"kmod-1.0.0": render_release_notes("1.0.0", groups, [], TAG)})
        sync = ReleaseNotesSynchronizer(store, lambda: ["1.0.0-5.14.0-10"], TAG)

        assert sync.sync("1.0.0", groups) is SyncStatus.UPDATED
        assert "`1.0.0-5.14.0-10` |" in store.documents["kmod-1.0.0"]

    def test_tag_listing_failure(self, groups: dict[str, KernelGroup]) -> None:
        def failing_lister() -> list[str]:
            raise RegistryCommandError("unauthorized")

        store = MemoryStore()
        sync = ReleaseNotesSynchronizer(store, failing_lister, TAG)

        with pytest.raises(ReleaseNotesError) as exc_info:
            sync.sync("1.0.0", groups)
        assert exc_info.value.code == "tag_listing_failed"
        assert store.writes == []
