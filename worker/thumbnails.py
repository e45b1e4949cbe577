"""Placeholder thumbnails used when ffmpeg cannot produce a real frame."""

import base64
import html
import random
from typing import Optional, Tuple

THUMBNAIL_SIZE = (320, 180)
TITLE_LABEL_MAX_LENGTH = 24

# (start, end) colour stops
GRADIENT_PALETTE: Tuple[Tuple[str, str], ...] = (
    ("#667eea", "#764ba2"),
    ("#f093fb", "#f5576c"),
    ("#4facfe", "#00f2fe"),
    ("#43e97b", "#38f9d7"),
    ("#fa709a", "#fee140"),
    ("#30cfd0", "#330867"),
)


def truncate_label(title: str, max_length: int = TITLE_LABEL_MAX_LENGTH) -> str:
    title = (title or "").strip() or "Untitled"
    if len(title) <= max_length:
        return title
    return title[: max_length - 1].rstrip() + "…"


def placeholder_svg(title: str, gradient: Tuple[str, str]) -> str:
    width, height = THUMBNAIL_SIZE
    start, end = gradient
    label = html.escape(truncate_label(title))
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" '
        f'viewBox="0 0 {width} {height}">'
        '<defs><linearGradient id="g" x1="0%" y1="0%" x2="100%" y2="100%">'
        f'<stop offset="0%" stop-color="{start}"/>'
        f'<stop offset="100%" stop-color="{end}"/>'
        "</linearGradient></defs>"
        f'<rect width="{width}" height="{height}" fill="url(#g)"/>'
        f'<polygon points="{width // 2 - 14},{height // 2 - 28} {width // 2 - 14},{height // 2 + 4} '
        f'{width // 2 + 14},{height // 2 - 12}" fill="#ffffff" fill-opacity="0.85"/>'
        f'<text x="50%" y="{height - 28}" text-anchor="middle" fill="#ffffff" '
        f'font-family="Arial, Helvetica, sans-serif" font-size="16">{label}</text>'
        "</svg>"
    )


def placeholder_data_url(title: str, rng: Optional[random.Random] = None) -> str:
    """``data:image/svg+xml;base64`` placeholder labelled with ``title``."""
    chooser = rng or random
    svg = placeholder_svg(title, chooser.choice(GRADIENT_PALETTE))
    return "data:image/svg+xml;base64," + base64.b64encode(svg.encode("utf-8")).decode("ascii")
