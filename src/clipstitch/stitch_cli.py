"""CLI for stitching — play a folder of clips into one video.

Clips are taken from a folder (sorted by name), from an explicit list of
files (kept in the given order), or from the `clips` list of a settings
manifest. Capture runs at playback speed, so a run takes at least as long
as the clips it stitches.

Usage:
    # Stitch every clip in a folder; output named after the folder
    clipstitch stitch footage/ --output-dir renders/

    # Explicit clip order and output path
    clipstitch stitch intro.mp4 talk.mov outro.webm --output final.mp4

    # Custom raster/encoder settings
    clipstitch stitch footage/ --manifest settings.yaml --output-dir renders/

    # List the clips that would be stitched
    clipstitch stitch footage/ --validate
"""

import argparse
import logging
import sys
from pathlib import Path

from .clips import collect_clips
from .common import output_filename
from .errors import ClipStitchError
from .sequencer import ClipSequencer, ProgressState
from .settings import StitchSettings, load_settings


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _print_progress(state: ProgressState) -> None:
    print(f"  [{state.current_clip_index}/{state.total_clips}] {state.status_message}", flush=True)


def _resolve_output(parsed, base_name: str | None, extension: str) -> Path:
    """Pick the output path once the negotiated extension is known."""
    if parsed.output:
        path = Path(parsed.output)
        if path.suffix.lower() != f".{extension}":
            print(f"  NOTE   encoder produced .{extension}; writing {path.with_suffix('.' + extension)}")
            path = path.with_suffix(f".{extension}")
        return path
    out_dir = Path(parsed.output_dir or ".")
    return out_dir / output_filename(base_name, extension)


def stitch(parsed) -> Path | None:
    settings = load_settings(parsed.manifest) if parsed.manifest else StitchSettings()

    inputs = parsed.inputs or list(settings.clips)
    if not inputs:
        raise ValueError("No clips given: pass a folder/files or a manifest with 'clips'")

    clips = collect_clips(inputs)
    base_name = None
    if len(inputs) == 1 and Path(inputs[0]).is_dir():
        base_name = Path(inputs[0]).resolve().name

    if parsed.validate:
        print(f"{len(clips)} clip(s) in stitch order:")
        for i, clip in enumerate(clips):
            print(f"  {i}: {clip.name}")
        return None

    print(
        f"Stitching {len(clips)} clip(s) at "
        f"{settings.width}x{settings.height}, {settings.fps}fps"
    )
    output = ClipSequencer(settings).run(clips, on_progress=_print_progress)

    path = output.write_to(_resolve_output(parsed, base_name, output.extension))
    print(f"\nDone: {path} ({output.mime_type}, {output.size / 1e6:.1f} MB)")
    return path


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Stitch video clips into one continuous video.",
    )
    parser.add_argument(
        "inputs", nargs="*",
        help="A folder of clips, or clip files in stitch order",
    )
    parser.add_argument(
        "--output", default=None,
        help="Output file path (extension follows the negotiated container)",
    )
    parser.add_argument(
        "--output-dir", default=None,
        help="Output directory; file is named after the clip folder",
    )
    parser.add_argument(
        "--manifest", default=None,
        help="Path to a YAML settings manifest",
    )
    parser.add_argument(
        "--validate", action="store_true",
        help="List the clips that would be stitched, don't encode",
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Log pipeline details",
    )
    parsed = parser.parse_args(args)

    if parsed.output and parsed.output_dir:
        parser.error("--output and --output-dir are mutually exclusive")
    if not parsed.inputs and not parsed.manifest:
        parser.error("Specify a clip folder/files or --manifest with a clips list")

    configure_logging(parsed.verbose)
    try:
        stitch(parsed)
    except (ClipStitchError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
