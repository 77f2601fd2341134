"""
Unit tests for the GHCN-Daily positional decoder
"""

import gzip
import io
import tarfile
from datetime import date

import pytest

from core.exceptions import FormatError
from ingestion.base import DateMode
from ingestion.transformers.ghcn_decoder import (
    RECORD_WIDTH,
    RecordFilter,
    decode_archive,
    decode_group,
    decode_line,
    decode_lines,
)
from ingestion.transformers.ghcn_normalizer import noaa_report_schema, observations_to_package
from schemas.noaa import MeasurementFlag, QualityFlag


def build_archive(members):
    """Build a gzip-compressed tar archive in memory from {name: text}."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, text in members.items():
            data = text.encode("latin-1")
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    buffer.seek(0)
    return buffer


class TestDecodeGroup:
    """Test decoding of one 8-character day group"""

    def test_plain_value(self):
        slot = decode_group("  258  I")

        assert slot.value == 258
        assert slot.measurement_flag is None
        assert slot.quality_flag is None
        assert slot.source_flag == "I"
        assert slot.decode_errors == ()

    def test_sentinel_is_absent(self):
        slot = decode_group("-9999   ")

        assert slot.value is None
        assert slot.source_flag == " "

    def test_negative_value(self):
        assert decode_group(" -123  S").value == -123

    def test_flags(self):
        slot = decode_group("  335B I")

        assert slot.measurement_flag is MeasurementFlag.PRECIPITATION_TOTAL_FROM_TWO_TWELVE_HOUR_TOTALS
        assert slot.quality_flag is None

        slot = decode_group("  330 KI")
        assert slot.measurement_flag is None
        assert slot.quality_flag is QualityFlag.STREAK_FREQUENT

    def test_unknown_flag_is_field_level_error(self):
        slot = decode_group("  258QYI")

        assert slot.value == 258
        assert slot.measurement_flag is None
        assert slot.quality_flag is None
        assert slot.source_flag == "I"
        assert slot.decode_errors == ("measurement_flag", "quality_flag")

    def test_non_numeric_value_is_structural(self):
        with pytest.raises(FormatError):
            decode_group("  2x8  I")


class TestDecodeLine:
    """Test decoding of full positional records"""

    def test_header_and_first_day(self, ghcn_lines):
        observation = decode_line(ghcn_lines[1])

        assert observation.station_id == "AE000041196"
        assert observation.year == 1944
        assert observation.month == 4
        assert observation.element == "TMAX"
        assert len(observation.days) == 31

        first = observation.days[0]
        assert first.value == 258
        assert first.measurement_flag is None
        assert first.quality_flag is None
        assert first.source_flag == "I"

        # April has 30 days; the 31st slot holds the sentinel
        assert observation.days[30].value is None

    def test_encode_reproduces_line(self, ghcn_lines):
        for line in ghcn_lines:
            assert decode_line(line).encode() == line

    def test_present_days_follow_value_presence(self, ghcn_lines):
        tavg = decode_line(ghcn_lines[0])
        tmin = decode_line(ghcn_lines[2])

        assert [day for day, _ in tavg.present_days()] == list(range(20, 32))
        assert len(list(tmin.present_days())) == 26

    def test_trimmed_trailing_blanks_are_padded(self, ghcn_lines):
        line = ghcn_lines[1].rstrip()
        assert len(line) < RECORD_WIDTH

        observation = decode_line(line)
        assert observation.days[30].value is None

    def test_overlong_line_rejected(self, ghcn_lines):
        with pytest.raises(FormatError):
            decode_line(ghcn_lines[1] + "X")

    def test_invalid_month_rejected(self, ghcn_lines):
        line = ghcn_lines[1][:15] + "13" + ghcn_lines[1][17:]
        with pytest.raises(FormatError):
            decode_line(line)

    def test_filter_applies_before_groups(self, ghcn_lines):
        broken = ghcn_lines[1][:21] + "garbage!" + ghcn_lines[1][29:]

        # Rejected by the filter, so the broken group is never decoded
        assert decode_line(broken, RecordFilter.build(elements=["TMIN"])) is None

        with pytest.raises(FormatError):
            decode_line(broken)


class TestRecordFilter:
    """Test element and station prefix predicates"""

    def test_no_predicates_match_everything(self):
        assert RecordFilter().matches("AE000041196", "TMAX")

    def test_element_allow_list(self):
        record_filter = RecordFilter.build(elements=["TMAX", "TMIN"])

        assert record_filter.matches("AE000041196", "TMAX")
        assert not record_filter.matches("AE000041196", "PRCP")

    def test_station_prefix_is_case_insensitive(self):
        record_filter = RecordFilter.build(station_prefixes=["ae"])

        assert record_filter.matches("AE000041196", "TMAX")
        assert not record_filter.matches("USW00094728", "TMAX")

    def test_both_predicates_must_hold(self):
        record_filter = RecordFilter.build(elements=["TMAX"], station_prefixes=["US"])

        assert not record_filter.matches("AE000041196", "TMAX")
        assert not record_filter.matches("USW00094728", "TMIN")
        assert record_filter.matches("USW00094728", "TMAX")

    def test_month_window_from_date_mode(self):
        record_filter = RecordFilter.build(elements=["TMAX"]).within(
            DateMode.since(date(1944, 3, 30), until=date(1944, 5, 2))
        )

        assert record_filter.elements == frozenset({"TMAX"})
        assert not record_filter.covers_month(1944, 2)
        assert record_filter.covers_month(1944, 3)
        assert record_filter.covers_month(1944, 5)
        assert not record_filter.covers_month(1944, 6)
        assert not record_filter.covers_month(1945, 1)

    def test_unfiltered_mode_keeps_every_month(self):
        record_filter = RecordFilter().within(DateMode.unfiltered())

        assert record_filter.covers_month(1800, 1)
        assert record_filter.covers_month(2100, 12)

    def test_lines_outside_window_are_not_decoded(self, ghcn_lines):
        record_filter = RecordFilter().within(DateMode.on(date(1944, 4, 3)))

        observations = list(decode_lines(ghcn_lines, record_filter))

        assert [(o.element, o.month) for o in observations] == [("TMAX", 4), ("TMIN", 4)]


class TestDecodeArchive:
    """Test archive scanning"""

    def test_bad_lines_are_skipped(self, ghcn_lines):
        lines = [ghcn_lines[0], "not a record", "", ghcn_lines[1]]

        observations = list(decode_lines(lines))

        assert [o.element for o in observations] == ["TAVG", "TMAX"]

    def test_members_in_order(self, ghcn_lines):
        archive = build_archive({
            "ghcnd_gsn/AE000041196.dly": "\n".join(ghcn_lines) + "\n",
            "ghcnd_gsn/empty.dly": "",
        })

        observations = list(decode_archive(archive))

        assert [o.element for o in observations] == ["TAVG", "TMAX", "TMIN"]

    def test_filtered_archive(self, ghcn_lines):
        archive = build_archive({"a.dly": "\n".join(ghcn_lines)})

        observations = list(decode_archive(archive, RecordFilter.build(elements=["TMIN"])))

        assert len(observations) == 1
        assert observations[0].element == "TMIN"

    def test_corrupt_container(self):
        with pytest.raises(FormatError):
            list(decode_archive(io.BytesIO(gzip.compress(b"definitely not a tar file" * 40))))

    def test_not_gzip(self):
        with pytest.raises(FormatError):
            list(decode_archive(io.BytesIO(b"plain bytes")))


class TestObservationsToPackage:
    """Test conversion of observations into package records"""

    def test_records_per_present_day(self, ghcn_lines):
        observations = list(decode_lines(ghcn_lines))

        package = observations_to_package(observations, noaa_report_schema())

        assert len(package.sections["TAVG"]) == 12
        assert len(package.sections["TMAX"]) == 30
        assert len(package.sections["TMIN"]) == 26

        first = package.sections["TMAX"][0]
        assert first.report_date == date(1944, 4, 1)
        assert first.independent == ["1944-04-01", "AE000041196"]
        assert first.entries == {
            "value": "258",
            "source_flag": "I",
            "measure_flag": "",
            "quality_flag": "",
        }

    def test_flag_names_in_entries(self, ghcn_lines):
        package = observations_to_package(decode_lines(ghcn_lines), noaa_report_schema())

        day_16 = package.sections["TMAX"][15]
        assert day_16.entries["measure_flag"] == "PrecipitationTotalFromTwoTwelveHourTotals"

        day_20 = package.sections["TAVG"][0]
        assert day_20.report_date == date(1944, 3, 20)
        assert day_20.entries["measure_flag"] == "HourlyPoint"
        assert day_20.entries["source_flag"] == "S"

    def test_failed_flag_is_left_out(self, ghcn_lines):
        line = ghcn_lines[1][:26] + "Q" + ghcn_lines[1][27:]
        observation = decode_line(line)

        package = observations_to_package([observation], noaa_report_schema())

        entries = package.sections["TMAX"][0].entries
        assert "measure_flag" not in entries
        assert entries["quality_flag"] == ""
        assert entries["value"] == "258"

    def test_unsupported_elements_skipped(self, ghcn_lines):
        package = observations_to_package(decode_lines(ghcn_lines), noaa_report_schema(["TMIN"]))

        assert list(package.sections) == ["TMIN"]

    def test_date_mode_filters_days(self, ghcn_lines):
        mode = DateMode.since(date(1944, 4, 10), until=date(1944, 4, 12))

        package = observations_to_package(decode_lines(ghcn_lines), noaa_report_schema(), mode)

        assert [r.report_date.day for r in package.sections["TMAX"]] == [10, 11, 12]
        assert package.sections.get("TAVG", []) == []

    def test_impossible_calendar_day_skipped(self, ghcn_lines):
        # Put a value in the 31st slot of April
        line = ghcn_lines[1][:-8] + "  300  I"

        package = observations_to_package([decode_line(line)], noaa_report_schema())

        assert len(package.sections["TMAX"]) == 30
