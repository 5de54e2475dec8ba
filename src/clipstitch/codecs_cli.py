"""CLI for codec negotiation — show what the encoder would pick.

Usage:
    clipstitch codecs
    clipstitch codecs --manifest settings.yaml
"""

import argparse
import sys

from .common import ffmpeg_exe
from .encoder import (
    CODEC_CANDIDATES,
    available_encoders,
    available_muxers,
    negotiate_codec,
    order_candidates,
)
from .errors import NoEncoderAvailableError
from .settings import StitchSettings, load_settings


def main(args=None):
    parser = argparse.ArgumentParser(
        description="List container/codec candidates and the negotiated choice.",
    )
    parser.add_argument(
        "--manifest", default=None,
        help="Path to a YAML settings manifest (applies encoder.prefer/strict)",
    )
    parsed = parser.parse_args(args)

    settings = load_settings(parsed.manifest) if parsed.manifest else StitchSettings()
    ffmpeg = ffmpeg_exe()
    encoders = available_encoders(ffmpeg)
    muxers = available_muxers(ffmpeg)

    print(f"ffmpeg: {ffmpeg}")
    for candidate in order_candidates(CODEC_CANDIDATES, settings.prefer):
        mark = "yes" if candidate.supported_by(encoders, muxers) else "no "
        print(
            f"  [{mark}] {candidate.mime_type:<34} "
            f"{candidate.muxer} {candidate.video_codec}/{candidate.audio_codec}"
        )

    try:
        chosen = negotiate_codec(
            encoders, muxers, prefer=settings.prefer, strict=settings.strict_codecs,
        )
    except NoEncoderAvailableError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    print(f"Negotiated: {chosen.mime_type} (.{chosen.extension})")


if __name__ == "__main__":
    main()
