import pytest

from image_describer.processing import (
    content_type_for,
    is_image_name,
    media_type_for,
    sniff_subtype,
    unique_name,
)

from fakes import image_bytes


@pytest.mark.parametrize(
    "name, expected",
    [("a.jpg", True), ("b.JPEG", True), ("c.png", True), ("d.GIF", True), ("e.bmp", False), ("jpg", False)],
)
def test_is_image_name(name, expected):
    assert is_image_name(name) is expected


def test_media_type_real_format_wins_over_extension():
    assert media_type_for("cat.JPG") == "jpeg"
    assert media_type_for("cat.png", image_bytes("JPEG")) == "jpeg"
    assert media_type_for("photo.jpg", image_bytes("PNG")) == "png"


def test_media_type_falls_back_to_extension_for_unreadable_bytes():
    assert media_type_for("cat.gif", b"not an image") == "gif"


def test_media_type_sniffs_when_extension_missing():
    assert media_type_for("upload", image_bytes("PNG")) == "png"
    assert media_type_for("upload", b"not an image") == "jpeg"
    assert sniff_subtype(image_bytes("GIF")) == "gif"


def test_content_type():
    assert content_type_for("x.gif") == "image/gif"


def test_unique_name_drops_directories():
    first = unique_name("folder/sub/cat.jpg")
    second = unique_name("folder/sub/cat.jpg")
    assert first != second
    assert first.endswith("_cat.jpg")
    assert "/" not in first
