"""Tests for placeholder thumbnails."""

import base64
import random

from worker.thumbnails import GRADIENT_PALETTE, placeholder_data_url, placeholder_svg, truncate_label


def _decode(data_url: str) -> str:
    prefix, encoded = data_url.split(",", 1)
    assert prefix == "data:image/svg+xml;base64"
    return base64.b64decode(encoded).decode("utf-8")


class TestTruncateLabel:
    def test_short_title_unchanged(self):
        assert truncate_label("Beach day") == "Beach day"

    def test_exactly_max_length_unchanged(self):
        title = "x" * 24
        assert truncate_label(title) == title

    def test_long_title_gets_ellipsis(self):
        label = truncate_label("Quarterly all-hands recording, part two")

        assert label.endswith("…")
        assert len(label) <= 24

    def test_blank_title(self):
        assert truncate_label("") == "Untitled"
        assert truncate_label("   ") == "Untitled"


class TestPlaceholder:
    def test_svg_uses_gradient_and_label(self):
        svg = placeholder_svg("Beach day", ("#111111", "#222222"))

        assert svg.startswith("<svg")
        assert 'width="320"' in svg and 'height="180"' in svg
        assert "#111111" in svg and "#222222" in svg
        assert ">Beach day</text>" in svg

    def test_title_is_escaped(self):
        svg = placeholder_svg('<script>"x"</script>', GRADIENT_PALETTE[0])

        assert "<script>" not in svg
        assert "&lt;script&gt;" in svg

    def test_data_url_round_trips_to_svg(self):
        svg = _decode(placeholder_data_url("Beach day", random.Random(3)))

        assert ">Beach day</text>" in svg

    def test_gradient_drawn_from_palette(self):
        rng = random.Random(1)
        expected = random.Random(1).choice(GRADIENT_PALETTE)

        svg = _decode(placeholder_data_url("Clip", rng))

        assert expected[0] in svg and expected[1] in svg
