#!/usr/bin/env python3
"""Generate synthetic clips for trying out clipstitch.

Creates 6 labeled clips in examples/demo-clips/ with mixed aspect ratios
and containers, so letterboxing and pillarboxing are visible in the
stitched output. Each clip carries a tone at its own pitch except one,
which is silent, so audio hand-offs (and the gap it leaves) are audible.

Usage:
    python examples/generate_demo_clips.py
    # Then stitch:
    clipstitch stitch examples/demo-clips/ --output-dir examples/demo-renders/
"""

import numpy as np
from moviepy import AudioClip, ImageClip
from pathlib import Path
from PIL import Image, ImageDraw, ImageFont

OUTPUT_DIR = Path(__file__).resolve().parent / "demo-clips"
FPS = 30
AUDIO_FPS = 44100

# (file name, size, color, duration, tone Hz or None for silent)
CLIPS = [
    ("01-landscape.mp4", (640, 360), (180, 60, 60),  2.0, 440.0),
    ("02-portrait.mp4",  (360, 640), (60, 60, 180),  2.0, 523.3),
    ("03-square.mov",    (480, 480), (60, 160, 60),  1.5, 659.3),
    ("04-silent.mp4",    (640, 360), (200, 130, 40), 1.5, None),
    ("05-cinema.webm",   (768, 320), (130, 60, 180), 2.0, 784.0),
    ("06-small.mp4",     (160, 120), (40, 170, 170), 1.0, 880.0),
]

# Container -> (video codec, audio codec) passed to moviepy.
CODECS = {
    ".mp4": ("libx264", "aac"),
    ".mov": ("libx264", "aac"),
    ".webm": ("libvpx", "libvorbis"),
}


def _make_frame(name: str, size: tuple[int, int], color: tuple[int, int, int]) -> np.ndarray:
    """Solid color card with the clip name and its geometry in white."""
    img = Image.new("RGB", size, color)
    draw = ImageDraw.Draw(img)
    try:
        font = ImageFont.truetype(
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", max(size[1] // 12, 12)
        )
    except OSError:
        font = ImageFont.load_default()
    label = f"{Path(name).stem}\n{size[0]}x{size[1]}"
    bbox = draw.multiline_textbbox((0, 0), label, font=font, align="center")
    tw, th = bbox[2] - bbox[0], bbox[3] - bbox[1]
    draw.multiline_text(
        ((size[0] - tw) / 2, (size[1] - th) / 2),
        label,
        fill=(255, 255, 255),
        font=font,
        align="center",
    )
    # Outline the frame edge so bars are easy to tell apart from content.
    draw.rectangle([0, 0, size[0] - 1, size[1] - 1], outline=(255, 255, 255), width=2)
    return np.array(img)


def _tone(freq: float, duration: float) -> AudioClip:
    return AudioClip(
        frame_function=lambda t: 0.3 * np.sin(2 * np.pi * freq * t),
        duration=duration,
        fps=AUDIO_FPS,
    )


def main():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    for name, size, color, duration, freq in CLIPS:
        out = OUTPUT_DIR / name
        if out.exists():
            print(f"  skip {name} (exists)")
            continue

        clip = ImageClip(_make_frame(name, size, color), duration=duration)
        if freq is not None:
            clip = clip.with_audio(_tone(freq, duration))

        codec, audio_codec = CODECS[out.suffix]
        clip.write_videofile(
            str(out), fps=FPS, codec=codec, audio_codec=audio_codec,
            audio=freq is not None, logger=None,
        )
        print(f"  wrote {name} ({size[0]}x{size[1]}, {duration}s)")

    print(f"\nDone. {len(CLIPS)} clips in {OUTPUT_DIR}")


if __name__ == "__main__":
    main()
