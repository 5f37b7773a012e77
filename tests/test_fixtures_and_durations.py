from __future__ import annotations

from datetime import timedelta

import pytest

from heliospectra.hardware.fixtures import (
    FixtureFamily,
    channel_index_for_wavelength,
    family_for_channel_count,
    metric_field_for_label,
    wavelength_from_label,
)
from heliospectra.timeutil import format_duration, parse_duration


def test_family_lookup_by_channel_count() -> None:
    assert family_for_channel_count(7) is FixtureFamily.S7
    assert family_for_channel_count(9) is FixtureFamily.DYNA
    assert family_for_channel_count(10) is FixtureFamily.S10
    for count in (0, 1, 8, 11):
        assert family_for_channel_count(count) is FixtureFamily.UNKNOWN


def test_family_labels() -> None:
    assert FixtureFamily.S7.labels == ("400nm", "420nm", "450nm", "530nm", "630nm", "660nm", "735nm")
    assert FixtureFamily.S10.labels[-1] == "6500k"
    assert FixtureFamily.DYNA.labels[-1] == "5700K"
    assert FixtureFamily.DYNA.channel_count == 9
    assert FixtureFamily.UNKNOWN.labels == ()


def test_wavelength_from_label_strips_units() -> None:
    assert wavelength_from_label("450nm") == 450
    assert wavelength_from_label("6500k") == 6500
    assert wavelength_from_label("5700K") == 5700
    assert wavelength_from_label("735") == 735
    with pytest.raises(ValueError):
        wavelength_from_label("nm")


def test_metric_field_names_distinguish_kelvin() -> None:
    assert metric_field_for_label("400") == "400nm"
    assert metric_field_for_label("450nm") == "450nm"
    assert metric_field_for_label("6500") == "6500k"
    assert metric_field_for_label("5700K") == "5700k"


def test_channel_index_for_wavelength() -> None:
    assert channel_index_for_wavelength(FixtureFamily.S7.labels, 450) == 2
    assert channel_index_for_wavelength(FixtureFamily.S10.labels, 6500) == 9
    assert channel_index_for_wavelength(FixtureFamily.S7.labels, 850) is None


@pytest.mark.parametrize(
    "text, expected",
    [
        ("10m", timedelta(minutes=10)),
        ("0s", timedelta(0)),
        ("0", timedelta(0)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("01h30m0s", timedelta(hours=1, minutes=30)),
        ("1.5h", timedelta(minutes=90)),
        ("250ms", timedelta(milliseconds=250)),
    ],
)
def test_parse_duration(text: str, expected: timedelta) -> None:
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "10", "h", "5 m", "10x", "-"])
def test_parse_duration_rejects_malformed(text: str) -> None:
    with pytest.raises(ValueError):
        parse_duration(text)


def test_format_duration() -> None:
    assert format_duration(timedelta(minutes=10)) == "10m0s"
    assert format_duration(timedelta(hours=49, minutes=30)) == "49h30m0s"
    assert format_duration(timedelta(seconds=1.5)) == "1.5s"
