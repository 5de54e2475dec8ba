"""clipstitch.common — shared utilities.

Contains: path variable resolution, ffmpeg binary lookup, and output
file naming.
"""

import re
import time
from functools import lru_cache

import imageio_ffmpeg


# ── Path utilities ─────────────────────────────────────────────────

def resolve_path_vars(text: str, paths: dict[str, str]) -> str:
    """Replace ${name} variables in a string using the paths dict."""
    def _replace(match):
        key = match.group(1)
        if key not in paths:
            raise ValueError(f"Unknown path variable: ${{{key}}}")
        return paths[key]
    return re.sub(r"\$\{(\w+)\}", _replace, text)


# ── ffmpeg ─────────────────────────────────────────────────────────

@lru_cache(maxsize=1)
def ffmpeg_exe() -> str:
    """Path to the ffmpeg binary bundled with (or located by) imageio-ffmpeg."""
    return imageio_ffmpeg.get_ffmpeg_exe()


# ── Output naming ─────────────────────────────────────────────────

def output_filename(base_name: str | None, extension: str) -> str:
    """Build the output filename for a finished run.

    Uses base_name (typically the source folder's name) when present,
    otherwise `stitched_video_<unix-ms>`.
    """
    stem = base_name or f"stitched_video_{int(time.time() * 1000)}"
    return f"{stem}.{extension.lstrip('.')}"
