"""Tests for the command-line interface."""

from xml.etree import ElementTree as ET

import numpy as np
import pytest
from PIL import Image

from rastertrace.cli import build_options, create_parser, get_image_files, main


class TestParser:
    """Test cases for argument parsing."""

    def test_options_from_flags(self):
        """Test that flags map onto option names."""
        parsed = create_parser().parse_args([
            "in.png", "--colors", "8", "--ltres", "0.5", "--scale", "2",
            "--connectivity", "8", "--no-viewbox", "--preset", "sharp",
        ])

        options = build_options(parsed)

        assert options == {
            "preset": "sharp",
            "number_of_colors": 8,
            "line_threshold": 0.5,
            "scale": 2.0,
            "connectivity": 8,
            "include_viewbox": False,
        }

    def test_defaults_leave_options_empty(self):
        """Test that unset flags do not override defaults."""
        assert build_options(create_parser().parse_args(["in.png"])) == {}

    def test_invalid_connectivity_rejected(self):
        """Test that argparse rejects unsupported connectivity."""
        with pytest.raises(SystemExit):
            create_parser().parse_args(["in.png", "--connectivity", "6"])


class TestMain:
    """Test cases for the main entry point."""

    def test_single_file(self, red_square_png, tmp_path):
        """Test converting one image."""
        output = tmp_path / "nested" / "out.svg"

        code = main([str(red_square_png), "-o", str(output), "--pathomit", "0"])

        assert code == 0
        root = ET.fromstring(output.read_text(encoding="utf-8"))
        assert root.attrib["width"] == "10"

    def test_default_output_path(self, red_square_png):
        """Test that output defaults to the input name with .svg."""
        assert main([str(red_square_png)]) == 0
        assert red_square_png.with_suffix(".svg").exists()

    def test_missing_input(self, tmp_path):
        """Test that a missing input returns exit code 1."""
        assert main([str(tmp_path / "missing.png")]) == 1

    def test_invalid_option(self, red_square_png):
        """Test that out-of-range options return exit code 1."""
        assert main([str(red_square_png), "--colors", "0"]) == 1

    def test_unwritable_output(self, red_square_png, tmp_path):
        """Test that an output path naming a directory returns exit code 1."""
        output_dir = tmp_path / "taken"
        output_dir.mkdir()

        assert main([str(red_square_png), "-o", str(output_dir)]) == 1

    def test_batch(self, tmp_path):
        """Test converting a folder, with one undecodable file."""
        images = tmp_path / "images"
        images.mkdir()
        for name, value in (("a.png", 0), ("b.jpg", 200)):
            pixels = np.full((8, 8, 3), value, dtype=np.uint8)
            pixels[2:6, 2:6] = 255 - value
            Image.fromarray(pixels).save(images / name)
        (images / "broken.png").write_bytes(b"not an image")
        (images / "notes.txt").write_text("ignored")
        output = tmp_path / "svgs"

        code = main([str(images), "-o", str(output)])

        assert code == 1
        assert (output / "a.svg").exists()
        assert (output / "b.svg").exists()
        assert not (output / "broken.svg").exists()

    def test_get_image_files(self, tmp_path):
        """Test that only image files are listed, sorted."""
        for name in ("b.PNG", "a.jpg", "c.txt"):
            (tmp_path / name).write_bytes(b"")

        assert [p.name for p in get_image_files(tmp_path)] == ["a.jpg", "b.PNG"]
