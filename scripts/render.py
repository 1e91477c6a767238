#!/usr/bin/env python3
"""
Share-card renderer: draws each article's card title onto the site's
template image and writes one PNG per article.

Usage:
    python3 scripts/render.py /path/to/settings.json /path/to/og-meta.json [output_dir]

settings.json names the template, the two fonts and the layout options;
relative paths resolve against the settings file's directory. og-meta.json
maps article slug -> {"title": ..., "display_title": ...}.

Output is written as JSON to stdout:
    {"outputs": {"<slug>": "/path/to/<slug>.png", ...}}

All progress/debug messages go to stderr.
"""

import json
import os
import sys
from pathlib import Path

from ogimage import Generator, LayoutParams, OGImageError

DEFAULT_OUTPUT_DIR = "build/og"
LAYOUT_KEYS = ("font_size", "line_height", "max_width_pct", "color", "compositing")


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------

def _load_json(path: Path) -> dict:
    if not path.is_file():
        _fatal(f"JSON file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except json.JSONDecodeError as exc:
        _fatal(f"Malformed JSON in {path}: {exc}")
    if not isinstance(payload, dict):
        _fatal(f"JSON file must contain an object: {path}")
    return payload


def _resolve_file(base_dir: Path, value: str | None) -> Path | None:
    """Resolve *value* against *base_dir* and verify the file exists."""
    if not value:
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    if not path.is_file():
        _fatal(f"File not found: {path}")
    return path


def _read_optional(path: Path | None) -> bytes | None:
    return path.read_bytes() if path else None


def expand_line_breaks(title: str) -> str:
    """Turn author-written "\\n" markup into real line breaks."""
    return title.replace("\\n", "\n")


def card_title(entry: dict) -> str:
    """Card title for an og-meta entry: display_title if set, else title."""
    return entry.get("display_title") or entry.get("title") or ""


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def build_generator(settings: dict, base_dir: Path) -> Generator:
    """Read the template and fonts named in *settings* and build a Generator."""
    template_path = _resolve_file(base_dir, settings.get("template"))
    if template_path is None:
        _fatal("settings must name a template image")

    fonts = settings.get("fonts", {})
    primary_path = _resolve_file(base_dir, fonts.get("primary"))
    secondary_path = _resolve_file(base_dir, fonts.get("secondary"))
    if primary_path is None and secondary_path is None:
        _log("WARNING: no fonts configured, cards will carry no text")

    try:
        params = LayoutParams(**{k: settings[k] for k in LAYOUT_KEYS if k in settings})
    except (TypeError, ValueError) as exc:
        _fatal(f"Invalid layout settings: {exc}")

    _log(f"Template: {template_path}")
    return Generator(
        template_path.read_bytes(),
        _read_optional(primary_path),
        _read_optional(secondary_path),
        params=params,
        weight=settings.get("weight", "bold"),
        strict_fonts=bool(settings.get("strict_fonts", False)),
        primary_index=int(fonts.get("primary_index", 0)),
        secondary_index=int(fonts.get("secondary_index", 0)),
    )


def render_all(generator: Generator, og_meta: dict, output_dir: Path) -> dict[str, str]:
    """Write ``<slug>.png`` for every entry of *og_meta*; return slug -> path."""
    outputs: dict[str, str] = {}
    for slug, entry in sorted(og_meta.items()):
        if not isinstance(entry, dict):
            _log(f"WARNING: skipping {slug!r}: entry is not an object")
            continue
        if Path(slug).name != slug:
            _log(f"WARNING: skipping {slug!r}: slug is not a plain file name")
            continue
        title = expand_line_breaks(card_title(entry))
        if not title.strip():
            _log(f"WARNING: skipping {slug!r}: no title")
            continue

        # Encode fully before touching the file so a failure leaves nothing behind
        data = generator.render_png(title)
        out_path = output_dir / f"{slug}.png"
        with open(out_path, "wb") as f:
            f.write(data)
        _log(f"Saved card: {out_path}")
        outputs[slug] = str(out_path)
    return outputs


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------

def _log(msg: str) -> None:
    """Print a debug/progress message to stderr."""
    print(f"[render] {msg}", file=sys.stderr)


def _fatal(msg: str) -> None:
    """Print an error to stderr and exit with code 1."""
    print(f"[render] ERROR: {msg}", file=sys.stderr)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def main() -> None:
    if len(sys.argv) < 3 or len(sys.argv) > 4:
        _fatal(f"Usage: {sys.argv[0]} <settings_json_path> <og_meta_json_path> [output_dir]")

    settings_path = Path(sys.argv[1]).resolve()
    og_meta_path = Path(sys.argv[2])
    settings = _load_json(settings_path)
    og_meta = _load_json(og_meta_path)

    base_dir = settings_path.parent
    if len(sys.argv) == 4:
        output_dir = Path(sys.argv[3])
    else:
        output_dir = base_dir / DEFAULT_OUTPUT_DIR
    if not output_dir.is_dir():
        os.makedirs(output_dir, exist_ok=True)
        _log(f"Created output directory: {output_dir}")

    try:
        generator = build_generator(settings, base_dir)
        outputs = render_all(generator, og_meta, output_dir)
    except OGImageError as exc:
        _fatal(str(exc))

    print(json.dumps({"outputs": outputs}, ensure_ascii=False))


if __name__ == "__main__":
    main()
