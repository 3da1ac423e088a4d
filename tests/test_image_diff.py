from __future__ import annotations

import pytest

from storewatch.diffing.image_diff import ImageDiffEngine, classify_severity
from storewatch.models import Severity


def test_identical_images_have_no_difference(make_png) -> None:
    engine = ImageDiffEngine()
    page = make_png()

    result = engine.compare(page, page)

    assert result.significant is False
    assert result.percentage == 0.0
    assert result.differing_pixels == 0
    assert result.dimension_changed is False


def test_percentage_is_share_of_differing_pixels(make_png) -> None:
    engine = ImageDiffEngine(diff_threshold_percent=5.0)

    result = engine.compare(make_png(), make_png(changed=73))

    assert result.significant is True
    assert result.percentage == 7.3
    assert result.differing_pixels == 73


@pytest.mark.parametrize(
    "changed, significant",
    [
        (50, False),
        (51, True),
    ],
)
def test_threshold_is_strictly_greater_than(make_png, changed: int, significant: bool) -> None:
    engine = ImageDiffEngine(diff_threshold_percent=5.0)

    result = engine.compare(make_png(), make_png(changed=changed))

    assert result.significant is significant


def test_percentage_rounded_to_two_decimals(make_png) -> None:
    engine = ImageDiffEngine()

    result = engine.compare(make_png(width=3, height=1), make_png(width=3, height=1, changed=1))

    assert result.percentage == 33.33
    assert result.significant is True


def test_dimension_change_is_never_significant(make_png) -> None:
    engine = ImageDiffEngine()

    result = engine.compare(make_png(height=10), make_png(height=20, color=(0, 0, 0)))

    assert result.dimension_changed is True
    assert result.significant is False
    assert result.overlay_url is None


@pytest.mark.parametrize("baseline, current", [(None, b"x"), (b"x", None), (b"", b"")])
def test_missing_input_is_treated_as_full_change(baseline, current) -> None:
    result = ImageDiffEngine().compare(baseline, current)

    assert result.significant is True
    assert result.percentage == 100.0
    assert result.error is None


def test_undecodable_input_reports_error(make_png) -> None:
    result = ImageDiffEngine().compare(b"not an image at all", make_png())

    assert result.significant is True
    assert result.percentage == 100.0
    assert result.error is not None
    assert result.error.startswith("decode failed")


def test_small_color_shift_within_tolerance_is_ignored(make_png) -> None:
    engine = ImageDiffEngine(pixel_threshold=0.1)

    result = engine.compare(make_png(), make_png(changed=1000, change_color=(250, 250, 250)))

    assert result.differing_pixels == 0
    assert result.significant is False


def test_overlay_stored_only_for_significant_change(make_png, artifacts) -> None:
    engine = ImageDiffEngine(artifacts=artifacts)

    significant = engine.compare(make_png(), make_png(changed=200), overlay_key="diffs/1/a-diff.png")
    quiet = engine.compare(make_png(), make_png(changed=10), overlay_key="diffs/1/b-diff.png")

    assert significant.overlay_url == "https://cdn.example.test/shots/diffs/1/a-diff.png"
    assert artifacts.get("diffs/1/a-diff.png") is not None
    assert quiet.overlay_url is None
    assert artifacts.get("diffs/1/b-diff.png") is None


def test_overlay_upload_failure_does_not_fail_comparison(make_png) -> None:
    class BrokenStore:
        def put(self, key, data, content_type="image/png"):
            raise OSError("disk full")

    engine = ImageDiffEngine(artifacts=BrokenStore())

    result = engine.compare(make_png(), make_png(changed=200), overlay_key="diffs/1/x.png")

    assert result.significant is True
    assert result.overlay_url is None


@pytest.mark.parametrize(
    "percentage, expected",
    [
        (5.1, Severity.LOW),
        (20.0, Severity.LOW),
        (20.01, Severity.HIGH),
        (100.0, Severity.HIGH),
    ],
)
def test_classify_severity(percentage: float, expected: Severity) -> None:
    assert classify_severity(percentage) == expected
