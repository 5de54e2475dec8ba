"""Clip descriptors and input selection.

A Clip is one input media resource plus the display name used for ordering
and status messages. Clips are immutable; the sequencer holds them for the
whole run and never mutates them.

Selection accepts a candidate when EITHER its declared media type is a
known video type OR its filename carries a known video extension. Accepted
clips are ordered lexicographically by name.
"""

import mimetypes
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterable

from .errors import NoValidClipsError


VALID_MEDIA_TYPES = {"video/mp4", "video/webm", "video/quicktime", "video/x-m4v"}

VALID_EXTENSIONS = {".mp4", ".mov", ".webm", ".mkv"}


@dataclass(frozen=True)
class Clip:
    """One input clip.

    source is a filesystem path, raw bytes, or a readable binary stream.
    Non-path sources are spooled to a temporary file when opened.
    """
    name: str
    source: str | Path | bytes | BinaryIO
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_path(self) -> bool:
        return isinstance(self.source, (str, Path))

    @property
    def suffix(self) -> str:
        return Path(self.name).suffix.lower()


def is_video_file(name: str, declared_type: str | None = None) -> bool:
    """True if the declared media type or the filename extension is a video."""
    if declared_type and declared_type.split(";")[0].strip().lower() in VALID_MEDIA_TYPES:
        return True
    return Path(name).suffix.lower() in VALID_EXTENSIONS


def _sort_key(clip: Clip) -> tuple[str, str]:
    # Case-insensitive first, raw name as tie-breaker for a stable total order.
    return (clip.name.casefold(), clip.name)


def select_clips(
    candidates: Iterable[tuple[str, str | Path | bytes | BinaryIO, str | None]],
) -> list[Clip]:
    """Filter (name, source, declared_type) candidates down to sorted clips.

    Raises:
        NoValidClipsError: If no candidate is a recognized video.
    """
    accepted = []
    rejected = []
    for name, source, declared_type in candidates:
        if is_video_file(name, declared_type):
            accepted.append(Clip(name=name, source=source))
        else:
            rejected.append(name)

    if not accepted:
        raise NoValidClipsError(rejected)
    return sorted(accepted, key=_sort_key)


def scan_folder(folder: str | Path) -> list[Clip]:
    """Select the video clips directly inside a folder.

    Declared types for files on disk are guessed from the filename.

    Raises:
        FileNotFoundError: If the folder does not exist.
        NoValidClipsError: If the folder has no video clips.
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise FileNotFoundError(f"Clip folder not found: {folder}")

    candidates = []
    for path in folder.iterdir():
        if not path.is_file():
            continue
        declared_type, _ = mimetypes.guess_type(path.name)
        candidates.append((path.name, path, declared_type))
    return select_clips(candidates)


def collect_clips(paths: Iterable[str | Path]) -> list[Clip]:
    """Build a clip list from folders and/or individual files.

    A single folder is scanned. Explicit files keep the order given (the
    caller has already chosen it); unrecognized files are rejected.

    Raises:
        FileNotFoundError: If a listed file does not exist.
        NoValidClipsError: If nothing usable remains.
    """
    paths = [Path(p) for p in paths]
    if len(paths) == 1 and paths[0].is_dir():
        return scan_folder(paths[0])

    clips = []
    rejected = []
    for path in paths:
        if path.is_dir():
            clips.extend(scan_folder(path))
            continue
        if not path.exists():
            raise FileNotFoundError(f"Clip not found: {path}")
        declared_type, _ = mimetypes.guess_type(path.name)
        if is_video_file(path.name, declared_type):
            clips.append(Clip(name=path.name, source=path))
        else:
            rejected.append(path.name)

    if not clips:
        raise NoValidClipsError(rejected)
    return clips
