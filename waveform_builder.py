"""Waveform image builder for PCM audio.

Draws every retained amplitude point of one or two PCM streams onto a
logical canvas (one column per point, one band per stream) and resamples it
to the requested output size. The command line front end can also run the
external ``lame`` encoder first to turn an MP3 into PCM streams.
"""
from __future__ import annotations

import argparse
import enum
import io
import json
import logging
import re
import sys
import tempfile
import uuid
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional, Sequence, Tuple

from PIL import Image, ImageDraw

from pcm_reader import (
    SamplePoint,
    data_point_count,
    iter_sample_points,
    read_pcm_header,
    stream_size,
)
from transcode import generate_wav_files

logger = logging.getLogger("waveform_builder")

LOG_DIR = Path("logs")
ERROR_LOG_PATH = LOG_DIR / "waveform_errors.log"

DEFAULT_WIDTH = 500
DEFAULT_HEIGHT = 100
DEFAULT_FOREGROUND = "#d1d1d1"
DEFAULT_DETAIL = 100
MIN_BAR_Y = 5

RGB = Tuple[int, int, int]

HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{6})$")


class InvalidConfig(ValueError):
    """Raised for render settings that cannot produce an image."""


class DrawStyle(enum.Enum):
    WAVEFORM = "waveform"
    BARS = "bars"

    @classmethod
    def from_name(cls, name: str) -> "DrawStyle":
        if not isinstance(name, str):
            raise InvalidConfig(f"Type {name!r} not found.")
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise InvalidConfig(f"Type {name} not found.") from None


def parse_hex_color(value: str) -> RGB:
    """Convert an HTML hex color (``#rrggbb``) to an RGB triple."""

    if not isinstance(value, str):
        raise InvalidConfig(f"Invalid color: {value!r}")
    match = HEX_COLOR.match(value.strip())
    if not match:
        raise InvalidConfig(f"Invalid color: {value!r}")
    digits = match.group(1)
    return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))


@dataclass(frozen=True)
class ColorZone:
    time_min: float
    time_max: float
    color: RGB

    def contains(self, time_seconds: float) -> bool:
        return self.time_min <= time_seconds <= self.time_max


@dataclass(frozen=True)
class RenderConfig:
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    foreground: RGB = parse_hex_color(DEFAULT_FOREGROUND)
    background: Optional[RGB] = None
    detail: int = DEFAULT_DETAIL
    stereo: bool = False
    style: DrawStyle = DrawStyle.WAVEFORM
    color_zones: Tuple[ColorZone, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.detail < 1:
            raise InvalidConfig(f"detail must be at least 1, got {self.detail}")
        if self.width <= 0 or self.height <= 0:
            raise InvalidConfig(
                f"Output size must be positive, got {self.width}x{self.height}"
            )
        if not isinstance(self.style, DrawStyle):
            raise InvalidConfig(f"Unknown draw style: {self.style!r}")
        for zone in self.color_zones:
            if zone.time_min > zone.time_max:
                raise InvalidConfig(
                    f"Color zone starts after it ends: {zone.time_min} > {zone.time_max}"
                )

    @property
    def stream_count(self) -> int:
        return 2 if self.stereo else 1


def parse_number(value: object, cast, name: str):
    """Coerce a user supplied number, rejecting booleans and garbage."""

    if isinstance(value, bool):
        raise InvalidConfig(f"{name} must be a number, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise InvalidConfig(f"{name} must be a number, got {value!r}") from None


TRUE_WORDS = ("true", "yes", "on", "1")
FALSE_WORDS = ("false", "no", "off", "0", "")


def parse_flag(value: object, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
    raise InvalidConfig(f"{name} must be true or false, got {value!r}")


def build_config(
    *,
    width: int = DEFAULT_WIDTH,
    height: int = DEFAULT_HEIGHT,
    foreground: str = DEFAULT_FOREGROUND,
    background: str = "",
    detail: int = DEFAULT_DETAIL,
    stereo: bool = False,
    style: str = DrawStyle.WAVEFORM.value,
    colors: Sequence[Tuple[float, float, str]] = (),
) -> RenderConfig:
    """Build a :class:`RenderConfig` from user facing values.

    Colors are HTML hex strings; an empty ``background`` means transparent.
    ``colors`` holds ``(time_min, time_max, color)`` zones in priority order,
    the last matching zone wins.
    """

    return RenderConfig(
        width=parse_number(width, int, "width"),
        height=parse_number(height, int, "height"),
        foreground=parse_hex_color(foreground),
        background=parse_hex_color(background) if background else None,
        detail=parse_number(detail, int, "detail"),
        stereo=parse_flag(stereo, "stereo"),
        style=DrawStyle.from_name(style),
        color_zones=tuple(
            ColorZone(
                parse_number(time_min, float, "zone start"),
                parse_number(time_max, float, "zone end"),
                parse_hex_color(color),
            )
            for time_min, time_max, color in colors
        ),
    )


def load_render_config(path: Path, **overrides: object) -> RenderConfig:
    """Read render settings from a JSON file.

    ``overrides`` whose value is not ``None`` replace the file values.
    """

    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidConfig(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidConfig(f"Config file {path} must contain a JSON object")

    try:
        colors = [
            (zone["min"], zone["max"], zone["color"]) for zone in data.pop("colors", [])
        ]
    except (KeyError, TypeError) as exc:
        raise InvalidConfig(
            f"Color zones in {path} need \"min\", \"max\" and \"color\" keys"
        ) from exc
    known = {"width", "height", "foreground", "background", "detail", "stereo", "style"}
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidConfig(f"Unknown config keys: {', '.join(unknown)}")

    for key, value in overrides.items():
        if value is None:
            continue
        if key == "colors":
            colors = list(value)  # type: ignore[arg-type]
        else:
            data[key] = value
    return build_config(colors=colors, **data)


def resolve_color(
    time_seconds: float, foreground: RGB, zones: Sequence[ColorZone]
) -> RGB:
    color = foreground
    for zone in zones:
        if zone.contains(time_seconds):
            color = zone.color
    return color


def amplitude_height(amplitude: int, band_height: int) -> int:
    return int(amplitude / 255 * band_height)


def stroke_coordinates(
    point: SamplePoint, channel: int, config: RenderConfig
) -> Tuple[int, int, int]:
    """Return ``(x, y1, y2)`` of the vertical stroke for ``point``.

    ``channel`` is 1-based; channel ``n`` owns rows ``[(n-1)*h, n*h)``.
    Columns count points and drawn points after the current one is taken,
    so the first retained point lands on column ``1 // detail`` (plus one
    for bars).
    """

    band = config.height
    v = amplitude_height(point.amplitude, band)
    base = band * channel
    x = (point.index + 1) // config.detail

    if config.style is DrawStyle.BARS:
        x += point.drawn + 1
        y2 = base - (band - v)
        return x, band, y2 if y2 > MIN_BAR_Y else MIN_BAR_Y

    return x, base - v, base - (band - v)


def draw_point(
    draw: ImageDraw.ImageDraw,
    point: SamplePoint,
    channel: int,
    config: RenderConfig,
) -> None:
    x, y1, y2 = stroke_coordinates(point, channel, config)
    color = resolve_color(point.time_seconds, config.foreground, config.color_zones)
    draw.line([(x, y1), (x, y2)], fill=color + (255,))


def allocate_canvas(width: int, height: int, background: Optional[RGB]) -> Image.Image:
    """RGBA canvas, fully transparent or filled with an opaque background."""

    fill = (0, 0, 0, 0) if background is None else background + (255,)
    return Image.new("RGBA", (width, height), fill)


def check_stream_count(count: int, config: RenderConfig) -> None:
    config.validate()
    if count != config.stream_count:
        mode = "stereo" if config.stereo else "mono"
        raise InvalidConfig(
            f"{mode} rendering needs {config.stream_count} PCM stream(s), got {count}"
        )


def compose_canvas(streams: Sequence[BinaryIO], config: RenderConfig) -> Image.Image:
    """Draw every stream into one logical canvas, one band per stream."""

    check_stream_count(len(streams), config)

    layouts = []
    for channel, stream in enumerate(streams, start=1):
        header = read_pcm_header(stream)
        data_points = data_point_count(stream_size(stream), header)
        logger.debug(
            "Channel %s/%s: %s Hz, %s bit, %s channel(s), %s points",
            channel,
            len(streams),
            header.sample_rate,
            header.bits_per_sample,
            header.channel_count,
            data_points,
        )
        layouts.append((stream, header, data_points))

    # every channel shares the width of the first one
    width = max(1, layouts[0][2] // config.detail)
    canvas = allocate_canvas(width, config.height * len(streams), config.background)
    draw = ImageDraw.Draw(canvas)
    logger.debug("Allocated %sx%s canvas", width, canvas.height)

    for channel, (stream, header, data_points) in enumerate(layouts, start=1):
        drawn = 0
        for point in iter_sample_points(stream, header, config.detail, data_points):
            draw_point(draw, point, channel, config)
            drawn += 1
        logger.debug("Channel %s: drew %s points", channel, drawn)

    return canvas


def resample_canvas(canvas: Image.Image, width: int, height: int) -> Image.Image:
    """Scale the logical canvas to ``width`` x ``height`` as a new image.

    Pillow resizes RGBA images with premultiplied alpha, so transparent
    areas keep their transparency instead of bleeding black into strokes.
    """

    if width <= 0 or height <= 0:
        raise InvalidConfig(f"Output size must be positive, got {width}x{height}")
    return canvas.resize((width, height), Image.Resampling.BOX)


def render_waveform(streams: Sequence[BinaryIO], config: RenderConfig) -> Image.Image:
    canvas = compose_canvas(streams, config)
    image = resample_canvas(canvas, config.width, config.height)
    logger.debug(
        "Resampled %sx%s canvas to %sx%s",
        canvas.width,
        canvas.height,
        image.width,
        image.height,
    )
    return image


def render_files(paths: Sequence[Path], config: RenderConfig) -> Image.Image:
    """Render PCM files (one for mono, left and right for stereo)."""

    check_stream_count(len(paths), config)
    with ExitStack() as stack:
        streams = [stack.enter_context(open(path, "rb")) for path in paths]
        return render_waveform(streams, config)


def save_image(image: Image.Image, path: Optional[Path] = None) -> Path:
    """Write ``image`` as PNG and return the path.

    Without ``path`` a unique ``<uuid>.png`` in the working directory is used.
    """

    if path is None:
        path = Path(f"{uuid.uuid4().hex}.png")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        image.save(tmp_path, "PNG")
        tmp_path.replace(path)
    finally:
        tmp_path.unlink(missing_ok=True)
    return path


def image_to_png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, "PNG")
    return buffer.getvalue()


def setup_logging(verbose: bool = False) -> tuple[logging.Logger, logging.Logger]:
    """Configure console and error loggers."""

    LOG_DIR.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("waveform_builder")
    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            logging.Formatter("[%(levelname)s] %(message)s")
        )
        logger.addHandler(console_handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    error_logger = logging.getLogger("waveform_builder.errors")
    if not error_logger.handlers:
        error_logger.setLevel(logging.ERROR)
        file_handler = logging.FileHandler(ERROR_LOG_PATH, mode="w", encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        )
        error_logger.addHandler(file_handler)
        error_logger.propagate = False

    return logger, error_logger


def parse_color_zone(raw: str) -> Tuple[float, float, str]:
    """Parse ``MIN:MAX:#RRGGBB`` from the command line."""

    parts = raw.split(":")
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(
            f"Color zone must look like MIN:MAX:#RRGGBB, got {raw!r}"
        )
    try:
        return float(parts[0]), float(parts[1]), parts[2]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid color zone times in {raw!r}") from None


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Render a waveform PNG from PCM (WAV) audio"
    )
    parser.add_argument(
        "inputs",
        nargs="+",
        type=Path,
        help="PCM WAV file (two files, left then right, with --stereo)",
    )
    parser.add_argument("-o", "--output", type=Path, help="Output PNG path")
    parser.add_argument("--config", type=Path, help="JSON file with render settings")
    parser.add_argument("--width", type=int, help=f"Output width (default {DEFAULT_WIDTH})")
    parser.add_argument("--height", type=int, help=f"Output height (default {DEFAULT_HEIGHT})")
    parser.add_argument("--foreground", help=f"Foreground hex color (default {DEFAULT_FOREGROUND})")
    parser.add_argument("--background", help="Background hex color; omit for transparent")
    parser.add_argument(
        "--detail",
        type=int,
        help=f"Points skipped per drawn point, larger is coarser (default {DEFAULT_DETAIL})",
    )
    parser.add_argument(
        "--stereo",
        action="store_true",
        default=None,
        help="Draw one band per channel",
    )
    parser.add_argument("--style", choices=[style.value for style in DrawStyle])
    parser.add_argument(
        "--color-zone",
        dest="colors",
        action="append",
        type=parse_color_zone,
        metavar="MIN:MAX:#RRGGBB",
        help="Override the foreground color between MIN and MAX seconds (repeatable)",
    )
    parser.add_argument(
        "--transcode",
        action="store_true",
        help="Treat the input as MP3 and decode it with lame first",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> RenderConfig:
    options = {
        "width": args.width,
        "height": args.height,
        "foreground": args.foreground,
        "background": args.background,
        "detail": args.detail,
        "stereo": args.stereo,
        "style": args.style,
        "colors": args.colors,
    }
    if args.config is not None:
        return load_render_config(args.config, **options)
    return build_config(**{key: value for key, value in options.items() if value is not None})


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    logger, error_logger = setup_logging(args.verbose)

    try:
        config = config_from_args(args)
        with tempfile.TemporaryDirectory(prefix="waveform_") as workdir:
            inputs = list(args.inputs)
            if args.transcode:
                if len(inputs) != 1:
                    raise InvalidConfig("--transcode takes exactly one input file")
                inputs = generate_wav_files(inputs[0], Path(workdir), config.stereo)
            image = render_files(inputs, config)
        output = save_image(image, args.output)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Could not render waveform: %s", exc)
        error_logger.exception("Rendering %s failed", ", ".join(map(str, args.inputs)))
        sys.exit(1)

    logger.info("Waveform saved to %s (%sx%s)", output, image.width, image.height)


if __name__ == "__main__":
    main()
