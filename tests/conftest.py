import io
import struct
import sys
from pathlib import Path

import numpy as np
import pytest
from fontTools.fontBuilder import FontBuilder
from fontTools.pens.ttGlyphPen import TTGlyphPen
from fontTools.ttLib import TTCollection, TTFont
from PIL import Image

# Add scripts/ to sys.path so the tools import without installing
SCRIPTS_DIR = Path(__file__).resolve().parents[1] / "scripts"
if str(SCRIPTS_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPTS_DIR))

import ogimage  # noqa: E402
from audit_fonts import SECONDARY_SAMPLE  # noqa: E402

# Box fonts: every glyph is a solid rectangle inset INSET units on each
# side and GLYPH_TOP units tall, so ink edges land on whole pixels at SIZE.
UNITS_PER_EM = 1000
INSET = 50
GLYPH_TOP = 700
DESCENT = 200
SIZE = 100
CANVAS = (1200, 630)

LATIN_ADVANCE = 500  # 50px at SIZE
CJK_ADVANCE = 1000   # 100px at SIZE
LATIN_ASCENT = 800   # 80px at SIZE
CJK_ASCENT = 880     # 88px at SIZE

LATIN_CHARS = "".join(chr(c) for c in range(0x20, 0x7F))
CJK_CHARS = SECONDARY_SAMPLE + "漢字共有語本カード"


def _box(advance):
    pen = TTGlyphPen(None)
    pen.moveTo((INSET, 0))
    pen.lineTo((INSET, GLYPH_TOP))
    pen.lineTo((advance - INSET, GLYPH_TOP))
    pen.lineTo((advance - INSET, 0))
    pen.closePath()
    return pen.glyph()


def build_font(chars, advance, family, ascent):
    """Compile a TrueType font with a box glyph for every char in *chars*."""
    cmap = {ord(ch): f"uni{ord(ch):04X}" for ch in chars}
    glyph_order = [".notdef"] + sorted(set(cmap.values()))
    glyphs = {".notdef": _box(advance)}
    for code, name in cmap.items():
        glyphs[name] = TTGlyphPen(None).glyph() if chr(code).isspace() else _box(advance)

    fb = FontBuilder(UNITS_PER_EM, isTTF=True)
    fb.setupGlyphOrder(glyph_order)
    fb.setupCharacterMap(cmap)
    fb.setupGlyf(glyphs)
    glyf = fb.font["glyf"]
    fb.setupHorizontalMetrics(
        {name: (advance, getattr(glyf[name], "xMin", 0)) for name in glyph_order}
    )
    fb.setupHorizontalHeader(ascent=ascent, descent=-DESCENT)
    fb.setupNameTable({"familyName": family, "styleName": "Regular"})
    fb.setupOS2(
        sTypoAscender=ascent, sTypoDescender=-DESCENT, sTypoLineGap=0,
        usWinAscent=ascent, usWinDescent=DESCENT,
    )
    fb.setupPost()

    buf = io.BytesIO()
    fb.save(buf)
    return buf.getvalue()


def damage_table(data, tag, fill=0x7F):
    """Overwrite the *tag* table of an sfnt blob with *fill* bytes.

    0x7F7F read as a contour count is far past what FreeType accepts, so a
    damaged glyf table parses with fontTools but fails to load in FreeType.
    """
    num_tables = struct.unpack(">H", data[4:6])[0]
    for i in range(num_tables):
        record = data[12 + 16 * i:28 + 16 * i]
        if record[:4] == tag.encode("ascii"):
            offset, length = struct.unpack(">II", record[8:16])
            return data[:offset] + bytes([fill]) * length + data[offset + length:]
    raise KeyError(tag)


def build_variable_font(family="Box Variable", axis=(100, 400, 900)):
    """Box Latin font with a wght axis and an empty gvar."""
    tt = TTFont(io.BytesIO(build_font(LATIN_CHARS, LATIN_ADVANCE, family, LATIN_ASCENT)))
    fb = FontBuilder(font=tt)
    lo, default, hi = axis
    fb.setupFvar([("wght", lo, default, hi, "Weight")], [])
    fb.setupGvar({name: [] for name in tt.getGlyphOrder()})

    buf = io.BytesIO()
    fb.save(buf)
    return buf.getvalue()


def build_collection(*blobs):
    """Pack font blobs into a .ttc collection."""
    collection = TTCollection()
    collection.fonts = [TTFont(io.BytesIO(blob)) for blob in blobs]
    buf = io.BytesIO()
    collection.save(buf)
    return buf.getvalue()


def make_png(size=CANVAS, color=(255, 255, 255, 255)):
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


def ink_mask(canvas, threshold=250):
    """Boolean array of pixels darker than *threshold* on a light canvas."""
    return np.asarray(canvas.convert("L")) < threshold


def ink_bbox(canvas):
    """(left, top, right, bottom) of the ink, right/bottom exclusive."""
    ys, xs = np.nonzero(ink_mask(canvas))
    assert len(xs), "expected ink on the canvas"
    return int(xs.min()), int(ys.min()), int(xs.max()) + 1, int(ys.max()) + 1


@pytest.fixture(scope="session")
def latin_font_bytes():
    return build_font(LATIN_CHARS, LATIN_ADVANCE, "Box Latin", LATIN_ASCENT)


@pytest.fixture(scope="session")
def cjk_font_bytes():
    return build_font(CJK_CHARS, CJK_ADVANCE, "Box CJK", CJK_ASCENT)


@pytest.fixture(scope="session")
def background_png():
    return make_png()


@pytest.fixture
def faces(latin_font_bytes, cjk_font_bytes):
    return ogimage.load_faces(latin_font_bytes, cjk_font_bytes, SIZE)


@pytest.fixture
def params():
    return ogimage.LayoutParams(font_size=SIZE)


@pytest.fixture(scope="session")
def damaged_font_bytes(latin_font_bytes):
    return damage_table(latin_font_bytes, "glyf")
