"""Run settings — raster geometry, audio format, encoder knobs.

Settings are fixed before a run starts. They come from module defaults or
from an optional YAML settings manifest, loaded and validated the same way
the other manifests in this package are: parse, resolve ${path} variables,
check each field, raise ValueError naming the offending field.

Settings manifest schema (every section optional):
  video:
    resolution: [1280, 720]
    fps: 30
  audio:
    sample_rate: 44100
    channels: 2
  encoder:
    crf: 20
    preset: veryfast
    strict: false
    prefer: ["video/webm;codecs=vp9,opus"]
  paths:
    footage: "/data/footage"
  clips:
    - "${footage}/a.mp4"
"""

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .common import resolve_path_vars


DEFAULT_RESOLUTION = (1280, 720)
DEFAULT_FPS = 30
DEFAULT_SAMPLE_RATE = 44100
DEFAULT_CHANNELS = 2
DEFAULT_CRF = 20
DEFAULT_PRESET = "veryfast"

VALID_CHANNELS = {1, 2}

VALID_PRESETS = {
    "ultrafast", "superfast", "veryfast", "faster", "fast",
    "medium", "slow", "slower", "veryslow",
}


@dataclass(frozen=True)
class StitchSettings:
    width: int = DEFAULT_RESOLUTION[0]
    height: int = DEFAULT_RESOLUTION[1]
    fps: int = DEFAULT_FPS
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS
    crf: int = DEFAULT_CRF
    preset: str = DEFAULT_PRESET
    strict_codecs: bool = False
    prefer: tuple[str, ...] = ()
    clips: tuple[str, ...] = field(default=())

    @property
    def resolution(self) -> tuple[int, int]:
        return (self.width, self.height)


def _positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"Settings: {name} must be a positive integer, got {value!r}")
    return value


def load_settings(manifest_path: str | Path) -> StitchSettings:
    """Load and validate a settings manifest.

    Processing pipeline:
      1. Parse YAML (an empty file yields the defaults).
      2. Validate video, audio and encoder sections.
      3. Resolve ${path} variables in the clips list.

    Raises:
        ValueError: Missing/invalid fields.
        FileNotFoundError: Missing manifest file.
    """
    with open(manifest_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError("Settings: top level must be a mapping")

    kwargs = {}

    video = raw.get("video", {}) or {}
    if "resolution" in video:
        resolution = video["resolution"]
        if not isinstance(resolution, (list, tuple)) or len(resolution) != 2:
            raise ValueError(
                f"Settings: video.resolution must be [width, height], got {resolution!r}"
            )
        kwargs["width"] = _positive_int(resolution[0], "video.resolution width")
        kwargs["height"] = _positive_int(resolution[1], "video.resolution height")
    if "fps" in video:
        kwargs["fps"] = _positive_int(video["fps"], "video.fps")

    audio = raw.get("audio", {}) or {}
    if "sample_rate" in audio:
        kwargs["sample_rate"] = _positive_int(audio["sample_rate"], "audio.sample_rate")
    if "channels" in audio:
        channels = audio["channels"]
        if channels not in VALID_CHANNELS:
            raise ValueError(
                f"Settings: audio.channels must be one of {sorted(VALID_CHANNELS)}, "
                f"got {channels!r}"
            )
        kwargs["channels"] = channels

    encoder = raw.get("encoder", {}) or {}
    if "crf" in encoder:
        crf = encoder["crf"]
        if isinstance(crf, bool) or not isinstance(crf, int) or not 0 <= crf <= 51:
            raise ValueError(f"Settings: encoder.crf must be in 0-51, got {crf!r}")
        kwargs["crf"] = crf
    if "preset" in encoder:
        preset = encoder["preset"]
        if preset not in VALID_PRESETS:
            raise ValueError(
                f"Settings: invalid encoder.preset '{preset}'. "
                f"Valid: {sorted(VALID_PRESETS)}"
            )
        kwargs["preset"] = preset
    if "strict" in encoder:
        kwargs["strict_codecs"] = bool(encoder["strict"])
    if "prefer" in encoder:
        # Imported here: encoder imports settings for its defaults.
        from .encoder import CODEC_CANDIDATES

        known = {c.mime_type for c in CODEC_CANDIDATES}
        prefer = tuple(encoder["prefer"] or ())
        for mime_type in prefer:
            if mime_type not in known:
                raise ValueError(
                    f"Settings: unknown encoder.prefer entry '{mime_type}'. "
                    f"Valid: {sorted(known)}"
                )
        kwargs["prefer"] = prefer

    paths = raw.get("paths", {}) or {}
    clips = raw.get("clips", []) or []
    kwargs["clips"] = tuple(resolve_path_vars(str(c), paths) for c in clips)

    return StitchSettings(**kwargs)
