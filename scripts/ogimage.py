#!/usr/bin/env python3
"""
Pillow-based share-card compositor: draws an article title onto a fixed
background template with two font faces, a primary face for Latin/ASCII
text and a secondary face for CJK text.

    title -> explicit line breaks -> script runs -> greedy character wrap
          -> vertical layout -> per-line compositing onto the canvas

The engine does no file or network I/O. Callers hand in template bytes and
font bytes (see scripts/render.py) and encode or stream the returned canvas.

All progress/debug messages go to stderr.
"""

import io
import math
import struct
import sys
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, NamedTuple

import numpy as np
from fontTools.ttLib import TTFont, TTLibError
from PIL import Image, ImageColor, ImageDraw, ImageFont

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class OGImageError(Exception):
    """Base class for share-card generation failures."""


class BackgroundDecodeError(OGImageError):
    """The background template bytes are not a decodable image."""


# Name used by callers that think of the template as "the image".
ImageDecodeError = BackgroundDecodeError


class FontParseError(OGImageError):
    """A font blob could not be parsed into a usable face."""


class EncodeError(OGImageError):
    """Writing the finished canvas failed."""


# ---------------------------------------------------------------------------
# Script classification
# ---------------------------------------------------------------------------


class Script(Enum):
    DEFAULT = "default"
    SECONDARY = "secondary"


# Inclusive code point ranges drawn with the secondary (CJK) face
SECONDARY_RANGES = (
    (0x3040, 0x309F),  # Hiragana
    (0x30A0, 0x30FF),  # Katakana
    (0x4E00, 0x9FFF),  # CJK Unified Ideographs
    (0x3000, 0x303F),  # CJK symbols and punctuation
    (0xFF00, 0xFFEF),  # Halfwidth and fullwidth forms
)


def classify(char: str) -> Script:
    code = ord(char)
    for first, last in SECONDARY_RANGES:
        if first <= code <= last:
            return Script.SECONDARY
    return Script.DEFAULT


class TextSegment(NamedTuple):
    text: str
    script: Script


def segment_text(text: str) -> list[TextSegment]:
    """Split *text* into maximal runs of one script.

    Joining the runs gives back *text*; neighbouring runs never share a
    script and no run is empty.
    """
    segments: list[TextSegment] = []
    start = 0
    current = None
    for i, char in enumerate(text):
        script = classify(char)
        if current is None:
            current = script
        elif script is not current:
            segments.append(TextSegment(text[start:i], current))
            start = i
            current = script
    if current is not None:
        segments.append(TextSegment(text[start:], current))
    return segments


# ---------------------------------------------------------------------------
# Font faces
# ---------------------------------------------------------------------------

WEIGHTS = {"light": 300, "regular": 400, "bold": 700, "black": 900}

# Drawn once at load time so damaged glyph data fails the load, not a render
TRIAL_TEXT = "".join(chr(c) for c in range(0x21, 0x7F)) + "あアー日本語漢字、。"
TRIAL_FALLBACK = 32


class FontFace:
    """A font program loaded at one pixel size.

    Measuring and drawing go through Pillow's FreeType binding; the cmap and
    family name come from fontTools. Not modified after construction, so one
    face may be shared by concurrent generations.
    """

    def __init__(
        self,
        font: ImageFont.FreeTypeFont,
        cmap: dict[int, str],
        family: str = "",
        variable: bool = False,
    ) -> None:
        self.font = font
        self.family = family
        self.variable = variable
        self.codepoints = frozenset(cmap)

    def __repr__(self) -> str:
        return f"FontFace({self.family or '?'!r}, size={self.size})"

    @property
    def size(self) -> float:
        return self.font.size

    def measure(self, text: str) -> float:
        """Advance width of *text* in pixels."""
        if not text:
            return 0.0
        try:
            return float(self.font.getlength(text))
        except OSError as exc:
            raise FontParseError(f"{self!r} cannot measure {text!r}: {exc}") from exc

    def ascent(self) -> int:
        """Distance from the baseline to the top of the face, in pixels."""
        return self.font.getmetrics()[0]

    def missing(self, text: str) -> list[str]:
        """Characters of *text* this face has no glyph for, in first-seen order."""
        missing: list[str] = []
        for char in text:
            if ord(char) not in self.codepoints and char not in missing:
                missing.append(char)
        return missing


def weight_value(weight: str | float) -> float:
    """Numeric weight for a name ("bold"), a digit string ("600") or a number.

    Unknown names fall back to bold with a warning.
    """
    if not isinstance(weight, str):
        return float(weight)
    name = weight.strip().lower()
    if name in WEIGHTS:
        return float(WEIGHTS[name])
    try:
        return float(name)
    except ValueError:
        _log(f"WARNING: unknown weight {weight!r}, using bold")
        return float(WEIGHTS["bold"])


def _set_weight(font: ImageFont.FreeTypeFont, weight: str | float) -> float | None:
    """Pin the weight axis of a variable font, clamped to the axis range.

    Returns the value applied, or None when the font has no weight axis.
    """
    target = weight_value(weight)

    try:
        axes = font.get_variation_axes()
    except OSError as exc:
        _log(f"Variation axes unavailable ({exc}); keeping the default instance")
        return None

    values = [float(a.get("default", a.get("minimum", 0))) for a in axes]
    for i, axis in enumerate(axes):
        # Pillow returns axis names as bytes
        name = axis.get("name", b"")
        if isinstance(name, bytes):
            name = name.decode("utf-8", errors="ignore")
        if name.lower() == "weight":
            lo = axis.get("minimum", 100)
            hi = axis.get("maximum", 900)
            values[i] = float(max(lo, min(hi, target)))
            font.set_variation_by_axes(values)
            return values[i]
    return None


def _trial_render(font: ImageFont.FreeTypeFont, cmap: dict[int, str]) -> None:
    """Measure and rasterise a sample of the cmap; FreeType raises OSError on bad glyphs."""
    sample = "".join(ch for ch in TRIAL_TEXT if ord(ch) in cmap)
    if not sample:
        codes = [c for c in sorted(cmap) if c > 0x20 and not 0xD800 <= c <= 0xDFFF]
        sample = "".join(chr(c) for c in codes[:TRIAL_FALLBACK])
    if sample:
        font.getlength(sample)
        font.getmask(sample)


def load_face(
    data: bytes,
    size: float,
    index: int = 0,
    weight: str | float = "bold",
) -> FontFace:
    """Parse *data* as a TrueType/OpenType font at *size* pixels.

    *index* picks a face inside a .ttc collection. *weight* ("light",
    "regular", "bold", "black", a number or a digit string) sets the weight
    axis of variable fonts and is ignored for static ones. Glyphs are trial
    rendered once so damaged outlines fail here.

    Raises FontParseError when the bytes are not a usable font program.
    """
    if not data:
        raise FontParseError("empty font data")

    try:
        tt = TTFont(io.BytesIO(data), fontNumber=index, lazy=True)
        try:
            cmap = tt.getBestCmap() or {}
            family = ""
            if "name" in tt:
                family = tt["name"].getBestFamilyName() or ""
            variable = "fvar" in tt
        finally:
            tt.close()
    except (TTLibError, struct.error, KeyError, ValueError, OSError) as exc:
        raise FontParseError(f"not a TrueType/OpenType font: {exc}") from exc

    try:
        font = ImageFont.truetype(io.BytesIO(data), size, index=index)
    except OSError as exc:
        raise FontParseError(f"FreeType could not load font: {exc}") from exc

    try:
        if variable:
            _set_weight(font, weight)
        _trial_render(font, cmap)
    except OSError as exc:
        raise FontParseError(f"glyph data unusable: {exc}") from exc
    return FontFace(font, cmap, family=family, variable=variable)


@dataclass(frozen=True)
class Faces:
    """At most one face per script slot; either slot may be empty."""

    primary: FontFace | None = None
    secondary: FontFace | None = None

    def resolve(self, script: Script) -> FontFace | None:
        """Face that draws a run of *script*, or None when the run is skipped.

        Secondary runs prefer the secondary face and fall back to the primary.
        Default runs only ever use the primary.
        """
        if script is Script.SECONDARY and self.secondary is not None:
            return self.secondary
        return self.primary


def load_faces(
    primary: bytes | None,
    secondary: bytes | None,
    size: float,
    weight: str | float = "bold",
    strict: bool = False,
    primary_index: int = 0,
    secondary_index: int = 0,
) -> Faces:
    """Load both face slots from font bytes.

    A missing blob leaves its slot empty. A blob that fails to parse also
    leaves the slot empty (logged) unless *strict* is set, in which case the
    FontParseError propagates.
    """
    loaded: dict[str, FontFace | None] = {}
    for slot, data, index in (
        ("primary", primary, primary_index),
        ("secondary", secondary, secondary_index),
    ):
        if not data:
            loaded[slot] = None
            continue
        try:
            face = load_face(data, size, index=index, weight=weight)
        except FontParseError as exc:
            if strict:
                raise
            _log(f"WARNING: {slot} font unusable, treating it as absent: {exc}")
            face = None
        else:
            kind = "variable" if face.variable else "static"
            _log(f"Loaded {slot} face: {face.family or '?'} "
                 f"({len(face.codepoints)} code points, {kind}, size {size})")
        loaded[slot] = face
    return Faces(**loaded)


# ---------------------------------------------------------------------------
# Measuring and wrapping
# ---------------------------------------------------------------------------


def _resolved_runs(line: str, faces: Faces) -> list[tuple[TextSegment, FontFace]]:
    """Script runs of *line* paired with their face; faceless runs are dropped.

    Measuring and drawing both go through here so they skip the same runs.
    """
    runs = []
    for segment in segment_text(line):
        face = faces.resolve(segment.script)
        if face is not None:
            runs.append((segment, face))
    return runs


def measure_line(line: str, faces: Faces) -> float:
    return sum(face.measure(seg.text) for seg, face in _resolved_runs(line, faces))


def wrap_line(text: str, max_width: float, faces: Faces) -> list[str]:
    """Greedy, character-level wrap of one explicit line.

    Characters are appended while the candidate measures within *max_width*.
    The rejected character opens the next line, so a single character wider
    than *max_width* gets a line of its own. CJK text has no spaces to break
    on, which is why this does not wrap on words.
    """
    lines: list[str] = []
    current = ""
    for char in text:
        candidate = current + char
        if measure_line(candidate, faces) <= max_width:
            current = candidate
            continue
        if current:
            lines.append(current)
        current = char
    if current:
        lines.append(current)
    return lines


def wrap_title(title: str, max_width: float, faces: Faces) -> list[str]:
    """Display lines for *title*: split on line breaks, wrap each chunk.

    Empty chunks (a leading, trailing or doubled break) add no line.
    """
    lines: list[str] = []
    for chunk in title.split("\n"):
        lines.extend(wrap_line(chunk, max_width, faces))
    return lines


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

COMPOSITING_MODES = ("mask", "glyph")


def parse_color(value) -> tuple[int, int, int, int]:
    """Normalise *value* to an RGBA tuple.

    Accepts Pillow colour strings ("#4A4B4A", "#4A4B4A80", "gray") and RGB or
    RGBA sequences.
    """
    if isinstance(value, str):
        try:
            return ImageColor.getcolor(value, "RGBA")
        except ValueError as exc:
            raise ValueError(f"unrecognised colour {value!r}") from exc

    channels = tuple(int(c) for c in value)
    if len(channels) == 3:
        channels += (255,)
    if len(channels) != 4 or not all(0 <= c <= 255 for c in channels):
        raise ValueError(f"colour needs 3 or 4 channels in 0-255, got {value!r}")
    return channels


@dataclass(frozen=True)
class LayoutParams:
    font_size: float = 56
    line_height: float = 1.5
    max_width_pct: float = 0.7
    color: tuple[int, int, int, int] = (74, 75, 74, 255)
    compositing: str = "mask"

    def __post_init__(self) -> None:
        if self.font_size <= 0:
            raise ValueError(f"font_size must be positive, got {self.font_size}")
        if self.line_height <= 0:
            raise ValueError(f"line_height must be positive, got {self.line_height}")
        if not 0 < self.max_width_pct <= 1:
            raise ValueError(f"max_width_pct must be in (0, 1], got {self.max_width_pct}")
        if self.compositing not in COMPOSITING_MODES:
            raise ValueError(f"compositing must be one of {COMPOSITING_MODES}, "
                             f"got {self.compositing!r}")
        object.__setattr__(self, "color", parse_color(self.color))

    def max_width(self, canvas_width: int) -> float:
        return canvas_width * self.max_width_pct


class LineLayout(NamedTuple):
    line_height: float
    start_y: float
    centers: list[tuple[float, float]]


def layout_lines(
    line_count: int,
    canvas_size: tuple[int, int],
    params: LayoutParams,
) -> LineLayout:
    """Centre a block of *line_count* lines on the canvas.

    Each entry of ``centers`` is the (x, y) centre of one line; every line is
    centred horizontally on its own.
    """
    width, height = canvas_size
    line_height = params.font_size * params.line_height
    total_height = line_count * line_height
    start_y = height / 2 - total_height / 2 + line_height / 2
    centers = [(width / 2, start_y + i * line_height) for i in range(line_count)]
    return LineLayout(line_height, start_y, centers)


# ---------------------------------------------------------------------------
# Compositing
# ---------------------------------------------------------------------------


def _round(value: float) -> int:
    return math.floor(value + 0.5)


def _composite(canvas: Image.Image, coverage: np.ndarray, color: tuple[int, int, int, int]) -> None:
    """Blend *color* over *canvas* using *coverage* (uint8) as per-pixel alpha."""
    alpha = (coverage.astype(np.uint16) * color[3] + 127) // 255
    layer = Image.new("RGBA", canvas.size, color[:3] + (0,))
    layer.putalpha(Image.fromarray(alpha.astype(np.uint8)))
    canvas.alpha_composite(layer)


def _draw_run(draw: ImageDraw.ImageDraw, x: int, baseline: int, seg: TextSegment,
              face: FontFace, fill: int) -> None:
    try:
        draw.text((x, baseline), seg.text, font=face.font, fill=fill, anchor="ls")
    except OSError as exc:
        raise FontParseError(f"{face!r} cannot render {seg.text!r}: {exc}") from exc


def draw_line(
    canvas: Image.Image,
    line: str,
    center_x: float,
    center_y: float,
    faces: Faces,
    color: tuple[int, int, int, int],
    compositing: str = "mask",
) -> None:
    """Draw one display line centred on (*center_x*, *center_y*), in place.

    All runs share one baseline, placed from the largest ascent among the
    faces the line uses. The pre-measured total width only positions the
    line; each run then advances the pen by its own face's advance.

    "mask" draws the whole line black-on-white into a scratch buffer and
    blends the inverted luminance once, so glyphs that touch or overlap are
    not darkened twice. "glyph" blends each run's coverage as it is drawn.
    """
    runs = _resolved_runs(line, faces)
    if not runs:
        return

    total_width = sum(face.measure(seg.text) for seg, face in runs)
    x = math.floor(center_x - total_width / 2)
    ascent = max(face.ascent() for _, face in runs)
    baseline = math.floor(center_y) + ascent // 2

    if compositing == "glyph":
        for seg, face in runs:
            if seg.text.strip():
                coverage = Image.new("L", canvas.size, 0)
                _draw_run(ImageDraw.Draw(coverage), x, baseline, seg, face, 255)
                _composite(canvas, np.asarray(coverage), color)
            x = _round(x + face.measure(seg.text))
        return

    scratch = Image.new("L", canvas.size, 255)
    draw = ImageDraw.Draw(scratch)
    for seg, face in runs:
        if seg.text.strip():
            _draw_run(draw, x, baseline, seg, face, 0)
        x = _round(x + face.measure(seg.text))
    _composite(canvas, 255 - np.asarray(scratch), color)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def decode_background(background: bytes | Image.Image) -> Image.Image:
    """Return a fresh RGBA canvas from template bytes or a decoded image."""
    if isinstance(background, Image.Image):
        return background.convert("RGBA")
    if not background:
        raise BackgroundDecodeError("empty background data")
    try:
        with Image.open(io.BytesIO(background)) as img:
            img.load()
            return img.convert("RGBA")
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise BackgroundDecodeError(f"cannot decode background image: {exc}") from exc


def _log_missing_glyphs(lines: list[str], faces: Faces) -> None:
    missing: dict[str, list[str]] = {}
    for line in lines:
        for seg, face in _resolved_runs(line, faces):
            slot = "secondary" if face is faces.secondary else "primary"
            chars = missing.setdefault(slot, [])
            for char in face.missing(seg.text):
                if char not in chars:
                    chars.append(char)
    for slot, chars in missing.items():
        if chars:
            _log(f"WARNING: {slot} face has no glyph for {''.join(chars)!r}")


def generate(
    background: bytes | Image.Image,
    faces: Faces,
    title: str,
    params: LayoutParams | None = None,
) -> Image.Image:
    """Composite *title* onto a copy of *background* and return the canvas.

    Raises BackgroundDecodeError if *background* cannot be decoded and
    FontParseError if a face turns out to have glyphs FreeType cannot load.
    """
    params = params or LayoutParams()
    canvas = decode_background(background)

    max_width = params.max_width(canvas.width)
    lines = wrap_title(title, max_width, faces)
    _log(f"Title wrapped into {len(lines)} line(s) (max width {max_width:.0f}px)")
    _log_missing_glyphs(lines, faces)

    layout = layout_lines(len(lines), canvas.size, params)
    for line, (center_x, center_y) in zip(lines, layout.centers):
        draw_line(canvas, line, center_x, center_y, faces, params.color, params.compositing)
    return canvas


def write_png(image: Image.Image, fp: BinaryIO) -> None:
    """Encode *image* as PNG into the writable *fp*."""
    try:
        image.save(fp, format="PNG")
    except (OSError, ValueError) as exc:
        raise EncodeError(f"cannot write PNG: {exc}") from exc


def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    write_png(image, buf)
    return buf.getvalue()


class Generator:
    """Share-card generator bound to one template and one pair of faces.

    The template is decoded and the fonts parsed once. Every call works on
    its own copy of the template, so a single Generator can serve many
    titles, including from concurrent callers.
    """

    def __init__(
        self,
        template: bytes | Image.Image,
        primary_font: bytes | None = None,
        secondary_font: bytes | None = None,
        params: LayoutParams | None = None,
        weight: str | float = "bold",
        strict_fonts: bool = False,
        primary_index: int = 0,
        secondary_index: int = 0,
    ) -> None:
        self.params = params or LayoutParams()
        self.template = decode_background(template)
        self.faces = load_faces(
            primary_font, secondary_font, self.params.font_size,
            weight=weight, strict=strict_fonts,
            primary_index=primary_index, secondary_index=secondary_index,
        )

    def generate(self, title: str) -> Image.Image:
        return generate(self.template, self.faces, title, self.params)

    def render_png(self, title: str) -> bytes:
        return encode_png(self.generate(title))

    def write_png(self, title: str, fp: BinaryIO) -> None:
        write_png(self.generate(title), fp)


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------

def _log(msg: str) -> None:
    """Print a debug/progress message to stderr."""
    print(f"[ogimage] {msg}", file=sys.stderr)
