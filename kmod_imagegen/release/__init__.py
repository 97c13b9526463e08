"""Release documentation module.

This module handles:
- Rendering and synchronizing the per-driver release document
- Storing release documents as files or GitHub releases
- Exporting published image pairs as CSV
"""

from kmod_imagegen.release.notes import ReleaseNotesSynchronizer, render_release_notes
from kmod_imagegen.release.stores import FileDocumentStore, GitHubReleaseStore

__all__ = [
    "FileDocumentStore",
    "GitHubReleaseStore",
    "ReleaseNotesSynchronizer",
    "render_release_notes",
]
