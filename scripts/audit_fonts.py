#!/usr/bin/env python3
"""
Font pair audit for the share-card compositor. Checks that the primary
(Latin) and secondary (CJK) fonts cover their scripts and that their metrics
agree closely enough to share one baseline.

Checks:
  1. cmap coverage: printable ASCII (primary); kana, CJK punctuation and
     common kanji (secondary)
  2. Rendering: a sample string produces non-zero ink
  3. CJK advance: full-width glyphs advance about one em (secondary)
  4. Baseline: ascent ratio between the two faces (report only)

Usage:
    python3 scripts/audit_fonts.py <primary_font> <secondary_font> [--visual out.png]

Output:
    Per-check PASS/FAIL report to stdout; exit status 1 if any check fails.
    With --visual: a sample card rendered with both faces.
"""

import os
import sys

import numpy as np
from PIL import Image, ImageDraw

from ogimage import Faces, FontParseError, LayoutParams, generate, load_face

AUDIT_SIZE = 64
MIN_COVERAGE = 0.90
ADVANCE_RANGE = (0.8, 1.2)

PRIMARY_SAMPLE = "".join(chr(c) for c in range(0x20, 0x7F))
KANA = "".join(chr(c) for c in range(0x3041, 0x3097)) + "".join(chr(c) for c in range(0x30A1, 0x30FB))
CJK_PUNCTUATION = "、。「」『』・ー〜"
KANJI_SAMPLE = "日本語記事技術開発設計作成更新公開読書"
SECONDARY_SAMPLE = KANA + CJK_PUNCTUATION + KANJI_SAMPLE

VISUAL_TITLE = "Share Card 共有カード\nBaseline ベースライン 2026"


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def check_coverage(face, sample):
    """Fraction of *sample* the face has glyphs for.

    Returns (coverage, missing_chars).
    """
    missing = face.missing(sample)
    unique = len(set(sample))
    return (unique - len(missing)) / unique, missing


def check_rendering(face, text):
    """Draw *text* and count ink pixels.

    Returns (passed, ink_pixels).
    """
    width = int(face.measure(text)) + AUDIT_SIZE
    img = Image.new("L", (max(width, 1), AUDIT_SIZE * 2), 0)
    ImageDraw.Draw(img).text((AUDIT_SIZE // 2, AUDIT_SIZE * 3 // 2), text,
                             font=face.font, fill=255, anchor="ls")
    ink_pixels = int((np.asarray(img) > 0).sum())
    return ink_pixels > 100, ink_pixels


def check_cjk_advance(face, char="漢"):
    """Advance of a full-width ideograph relative to the font size.

    Returns (passed, ratio).
    """
    ratio = face.measure(char) / face.size
    lo, hi = ADVANCE_RANGE
    return lo <= ratio <= hi, round(ratio, 2)


def baseline_ratio(primary, secondary):
    """Ascent of the secondary face divided by the primary's."""
    return round(secondary.ascent() / max(primary.ascent(), 1), 2)


# ---------------------------------------------------------------------------
# Visual sample
# ---------------------------------------------------------------------------

def render_visual(faces, out_path):
    """Render a sample mixed-script card with both faces to *out_path*."""
    background = Image.new("RGBA", (1200, 630), (245, 245, 240, 255))
    params = LayoutParams(font_size=AUDIT_SIZE)
    canvas = generate(background, faces, VISUAL_TITLE, params)

    # Label with the first available face
    draw = ImageDraw.Draw(canvas)
    for face in (faces.primary, faces.secondary):
        if face is not None:
            draw.text((10, 10), f"{face.family or '?'} @ {AUDIT_SIZE}px",
                      font=face.font, fill=(150, 150, 150, 255))
            break

    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    canvas.save(out_path)
    print(f"\nVisual sample saved to: {out_path}")


# ---------------------------------------------------------------------------
# Main audit runner
# ---------------------------------------------------------------------------

def _load(path, slot):
    try:
        with open(path, "rb") as f:
            return load_face(f.read(), AUDIT_SIZE)
    except (OSError, FontParseError) as exc:
        print(f"    {slot}: cannot load {path}: {exc}")
        return None


def run_audit(primary_path, secondary_path, visual=None):
    """Run every check on the font pair.

    Returns (results, all_passed).
    """
    print("=" * 70)
    print("SHARE CARD FONT AUDIT")
    print("=" * 70)

    primary = _load(primary_path, "primary")
    secondary = _load(secondary_path, "secondary")
    results = {"primary": {}, "secondary": {}}
    all_passed = primary is not None and secondary is not None

    for slot, face, sample in (
        ("primary", primary, PRIMARY_SAMPLE),
        ("secondary", secondary, SECONDARY_SAMPLE),
    ):
        if face is None:
            results[slot]["load"] = {"pass": False}
            continue
        print(f"\n--- {slot}: {face.family or '?'} ---")

        coverage, missing = check_coverage(face, sample)
        passed = coverage >= MIN_COVERAGE
        results[slot]["cmap"] = {
            "pass": passed,
            "coverage": f"{coverage * 100:.1f}%",
            "missing": [f"U+{ord(c):04X}" for c in missing],
        }
        print(f"    L1 cmap coverage: {'PASS' if passed else 'FAIL'} ({coverage * 100:.1f}%)")
        if missing:
            print(f"       Missing: {', '.join(f'U+{ord(c):04X}' for c in missing[:5])}"
                  + (f" +{len(missing) - 5} more" if len(missing) > 5 else ""))
        all_passed = all_passed and passed

        sample_text = "Share Card 2026" if slot == "primary" else KANJI_SAMPLE
        passed, ink_pixels = check_rendering(face, sample_text)
        results[slot]["rendering"] = {"pass": passed, "ink_pixels": ink_pixels}
        print(f"    L2 rendering:     {'PASS' if passed else 'FAIL'} ({ink_pixels} ink pixels)")
        all_passed = all_passed and passed

        if slot == "secondary":
            passed, ratio = check_cjk_advance(face)
            results[slot]["cjk_advance"] = {"pass": passed, "ratio": ratio}
            print(f"    L3 CJK advance:   {'PASS' if passed else 'FAIL'} ({ratio} em)")
            all_passed = all_passed and passed

    if primary is not None and secondary is not None:
        ratio = baseline_ratio(primary, secondary)
        results["baseline_ratio"] = ratio
        print(f"\n    L4 baseline: secondary/primary ascent = {ratio}"
              f" ({primary.ascent()}px vs {secondary.ascent()}px)")

    print("\n" + "=" * 70)
    print(f"OVERALL: {'PASS' if all_passed else 'FAIL'}")
    print("=" * 70)

    if visual:
        render_visual(Faces(primary=primary, secondary=secondary), visual)

    return results, all_passed


def main():
    args = sys.argv[1:]
    visual = None
    if "--visual" in args:
        i = args.index("--visual")
        if i + 1 >= len(args):
            print(f"Usage: {sys.argv[0]} <primary_font> <secondary_font> [--visual out.png]",
                  file=sys.stderr)
            sys.exit(2)
        visual = args[i + 1]
        del args[i:i + 2]
    if len(args) != 2:
        print(f"Usage: {sys.argv[0]} <primary_font> <secondary_font> [--visual out.png]",
              file=sys.stderr)
        sys.exit(2)

    _, all_passed = run_audit(args[0], args[1], visual=visual)
    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
