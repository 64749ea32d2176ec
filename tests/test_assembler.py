"""Tests for MetadataRecord parsing and metadata tree assembly."""

from datetime import datetime

import pytest

from metastamp.assembler import (
    assemble,
    assemble_with_report,
    form_defaults,
    parse_coordinate,
    parse_rating,
)
from metastamp.encoders import deg_to_dms_rational, encode_utf16le
from metastamp.models import SEGMENTS, FieldStatus, MetadataRecord

pytestmark = [pytest.mark.fast]


def test_empty_record_still_has_all_segments(fixed_now):
    tree = assemble(MetadataRecord(), now=fixed_now)
    assert tuple(tree) == SEGMENTS
    assert tree["location"] == {}
    assert tree["interoperability"] == {}
    assert tree["thumbnail"] == {}


def test_empty_record_defaults_rating_and_date(fixed_now):
    tree, report = assemble_with_report(MetadataRecord(), now=fixed_now)
    assert tree["primary"] == {"rating": 5}
    assert tree["capture"] == {
        "original-datetime": "2024:06:01 12:00:00",
        "digitized-datetime": "2024:06:01 12:00:00",
    }
    assert report["rating"] == FieldStatus.DEFAULTED
    assert report["date_taken"] == FieldStatus.DEFAULTED
    assert report["author"] == FieldStatus.OMITTED
    assert report["latitude"] == FieldStatus.OMITTED


def test_text_fields_map_to_primary_tags(fixed_now):
    record = MetadataRecord(
        author="A. Photographer",
        copyright_notice="© 2024",
        title="Harbour at dusk",
    )
    primary = assemble(record, now=fixed_now)["primary"]
    assert primary["creator"] == "A. Photographer"
    assert primary["rights"] == "© 2024"
    assert primary["description"] == "Harbour at dusk"


def test_whitespace_only_fields_are_omitted(fixed_now):
    tree, report = assemble_with_report(
        MetadataRecord(author="   ", keywords=" ", comments="\n"), now=fixed_now
    )
    assert "creator" not in tree["primary"]
    assert "keywords" not in tree["primary"]
    assert "user-comment" not in tree["capture"]
    assert report["keywords"] == FieldStatus.OMITTED


def test_keywords_and_subject_are_utf16_encoded(fixed_now):
    record = MetadataRecord(keywords="tag1,tag2", subject="Boats \U0001F6A4")
    primary = assemble(record, now=fixed_now)["primary"]
    assert primary["keywords"] == encode_utf16le("tag1,tag2")
    assert primary["subject"] == encode_utf16le("Boats \U0001F6A4")


def test_comments_stay_plain_text(fixed_now):
    capture = assemble(MetadataRecord(comments="shot on film"), now=fixed_now)["capture"]
    assert capture["user-comment"] == "shot on film"


def test_date_taken_sets_both_capture_times():
    record = MetadataRecord(date_taken=datetime(2024, 3, 15, 10, 30))
    capture = assemble(record)["capture"]
    assert capture["original-datetime"] == "2024:03:15 10:30:00"
    assert capture["digitized-datetime"] == "2024:03:15 10:30:00"


def test_date_taken_accepts_form_text():
    record = MetadataRecord(dateTaken="2024-03-15T10:30")
    assert record.date_taken == datetime(2024, 3, 15, 10, 30)


def test_unparseable_date_falls_back_to_now(fixed_now):
    record = MetadataRecord(date_taken="not a date")
    assert record.date_taken is None
    tree, report = assemble_with_report(record, now=fixed_now)
    assert tree["capture"]["original-datetime"] == "2024:06:01 12:00:00"
    assert report["date_taken"] == FieldStatus.DEFAULTED


def test_gps_both_present(fixed_now):
    record = MetadataRecord(latitude=40.7128, longitude=-74.0060)
    location = assemble(record, now=fixed_now)["location"]
    assert location["latitude-ref"] == "N"
    assert location["longitude-ref"] == "W"
    assert location["latitude"] == deg_to_dms_rational(40.7128)
    assert location["longitude"] == deg_to_dms_rational(74.0060)


def test_gps_from_form_strings(fixed_now):
    record = MetadataRecord(latitude="51.5074", longitude="-0.1278")
    location = assemble(record, now=fixed_now)["location"]
    assert location["latitude-ref"] == "N"
    assert location["longitude-ref"] == "W"
    assert location["longitude"] == ((0, 1), (7, 1), (4008, 100))


def test_gps_only_latitude_leaves_location_empty(fixed_now):
    tree, report = assemble_with_report(MetadataRecord(latitude="40.7128"), now=fixed_now)
    assert tree["location"] == {}
    assert report["latitude"] == FieldStatus.OMITTED
    assert report["longitude"] == FieldStatus.OMITTED


@pytest.mark.parametrize("bad", ["abc", "nan", "inf", ""])
def test_gps_unparseable_leaves_location_empty(fixed_now, bad):
    tree = assemble(MetadataRecord(latitude=bad, longitude="10.0"), now=fixed_now)
    assert tree["location"] == {}


@pytest.mark.parametrize(
    "lat, lng",
    [("1e12", "10"), ("90.5", "10"), ("45", "-180.01"), ("45", "1e308")],
)
def test_gps_out_of_range_is_omitted(fixed_now, lat, lng):
    tree, report = assemble_with_report(MetadataRecord(latitude=lat, longitude=lng), now=fixed_now)
    assert tree["location"] == {}
    assert report["latitude"] == FieldStatus.OMITTED
    assert report["longitude"] == FieldStatus.OMITTED


def test_gps_range_edges_are_written(fixed_now):
    location = assemble(MetadataRecord(latitude="-90", longitude="180"), now=fixed_now)["location"]
    assert location["latitude-ref"] == "S"
    assert location["latitude"] == ((90, 1), (0, 1), (0, 100))
    assert location["longitude"] == ((180, 1), (0, 1), (0, 100))


def test_rating_empty_defaults_to_five(fixed_now):
    tree = assemble(MetadataRecord(rating=""), now=fixed_now)
    assert tree["primary"]["rating"] == 5


@pytest.mark.parametrize(
    "raw, expected",
    [("4", 4), (" 3 ", 3), ("4.7", 4), (0, 0), (2, 2), ("0", 0)],
)
def test_rating_parses_integer_prefix(raw, expected):
    assert parse_rating(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "five", "9", "-1", 6, True, float("nan")])
def test_rating_invalid_is_none(raw):
    assert parse_rating(raw) is None


def test_invalid_rating_reported_as_defaulted(fixed_now):
    tree, report = assemble_with_report(MetadataRecord(rating="excellent"), now=fixed_now)
    assert tree["primary"]["rating"] == 5
    assert report["rating"] == FieldStatus.DEFAULTED


@pytest.mark.parametrize("raw, expected", [("1.5", 1.5), (" -2 ", -2.0), (3, 3.0), ("180", 180.0), ("180.5", None)])
def test_parse_coordinate(raw, expected):
    assert parse_coordinate(raw) == expected


def test_parse_coordinate_latitude_limit():
    assert parse_coordinate("90", 90.0) == 90.0
    assert parse_coordinate("91", 90.0) is None


def test_with_image_defaults_fills_empty_base():
    record = MetadataRecord(title="x")
    assert record.with_image_defaults("holiday.photo.jpg").file_name_base == "holiday.photo"
    named = MetadataRecord(file_name_base="trip")
    assert named.with_image_defaults("other.png").file_name_base == "trip"


def test_form_defaults():
    now = datetime(2025, 7, 4, 9, 15, 42)
    defaults = form_defaults("my-summer_trip.jpeg", now)
    assert defaults == {
        "file_name_base": "my-summer_trip",
        "title": "my summer trip",
        "date_taken": "2025-07-04T09:15",
        "rating": 5,
        "copyright_notice": "© 2025",
    }
