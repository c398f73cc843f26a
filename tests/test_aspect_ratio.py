import pytest

from aspect_ratio import (
    FEED,
    STORY,
    detect_aspect_ratio,
    normalize_ratio,
    placement_for,
    resolve_aspect_ratio,
)


@pytest.mark.parametrize(
    "name",
    ["ad_9x16.mp4", "ad-9X16.mp4", "ad (9:16).mp4", "AD.9x16.MOV", "ad 9 x 16.mp4", "ad_9.0x16.0.mp4"],
)
def test_story_ratio_detected_across_delimiters_and_case(name):
    assert detect_aspect_ratio(name) == "9:16"


@pytest.mark.parametrize(
    "name,expected",
    [
        ("square_1x1.jpg", "1:1"),
        ("portrait-4x5.png", "4:5"),
        ("wide_16x9.mp4", "16:9"),
        ("hero_4:5_v2.jpg", "4:5"),
    ],
)
def test_feed_ratios_detected(name, expected):
    assert detect_aspect_ratio(name) == expected


def test_detection_is_idempotent_on_its_own_output():
    first = detect_aspect_ratio("clip_9x16.mp4")
    assert detect_aspect_ratio(first) == first


def test_resolution_tokens_are_not_ratios():
    assert detect_aspect_ratio("clip_1080x1920.mp4") is None
    assert detect_aspect_ratio("no_ratio_here.mp4") is None


def test_unknown_ratio_is_skipped_for_a_later_known_one():
    assert detect_aspect_ratio("v1x16_then_4x5.jpg") == "4:5"


def test_tags_take_precedence_over_filename():
    assert resolve_aspect_ratio(["9:16"], "hero_1x1.mp4") == "9:16"
    assert resolve_aspect_ratio([], "hero_1x1.mp4") == "1:1"
    assert resolve_aspect_ratio(["garbage"], "hero_4x5.mp4") == "4:5"


def test_normalize_ratio():
    assert normalize_ratio("9x16") == "9:16"
    assert normalize_ratio(" 16 X 9 ") == "16:9"
    assert normalize_ratio("3:2") is None
    assert normalize_ratio(None) is None


def test_placement_groups():
    assert placement_for("9:16") == STORY
    for ratio in ("1:1", "4:5", "16:9", None):
        assert placement_for(ratio) == FEED
