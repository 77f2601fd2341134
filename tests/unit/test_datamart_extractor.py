"""
Unit tests for the datamart REST adapter
"""

import logging
from datetime import date
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from core.exceptions import FormatError, SchemaViolationError, TransportError
from ingestion.base import DateMode
from ingestion.extractors.datamart_extractor import DatamartExtractor, check_datamart
from ingestion.transformers.datamart_normalizer import DatamartNormalizer, parse_datamart_date

BASE_URL = "https://datamart.example.com/services/v1.1/reports"


def json_response(payload, status_code=200, url=BASE_URL):
    return httpx.Response(status_code, json=payload, request=httpx.Request("GET", url))


def mock_client(mock_client_class, responses):
    """Wire patched httpx.AsyncClient to return responses in order."""
    client = mock_client_class.return_value.__aenter__.return_value
    client.get = AsyncMock(side_effect=responses)
    return client


class TestParseDatamartDate:

    def test_plain(self):
        assert parse_datamart_date("03/13/2020") == date(2020, 3, 13)

    def test_with_time_part(self):
        assert parse_datamart_date("3/9/2020 12:00:00 AM") == date(2020, 3, 9)

    def test_unparseable(self):
        with pytest.raises(FormatError):
            parse_datamart_date("2020-03-13")


class TestDatamartNormalizer:
    """Test row handling"""

    def test_null_date_row_skipped(self, cattle_schema, mock_datamart_rows, caplog):
        normalizer = DatamartNormalizer("2466", cattle_schema)

        with caplog.at_level(logging.WARNING):
            records = normalizer.normalize_rows("Detail", mock_datamart_rows)

        assert len(records) == 2
        assert records[0].independent == ["2020-03-13", "STEER"]
        assert records[0].entries == {"head_count": "1,234", "weighted_avg_price": "118.50"}
        assert records[1].entries["weighted_avg_price"] == ""
        assert "null `report_date`" in caplog.text

    def test_missing_date_column(self, cattle_schema):
        normalizer = DatamartNormalizer("2466", cattle_schema)

        with pytest.raises(SchemaViolationError):
            normalizer.normalize_rows("Summary", [{"previous_day_head_count": "10"}])

    def test_missing_independent_column(self, cattle_schema):
        normalizer = DatamartNormalizer("2466", cattle_schema)

        with pytest.raises(SchemaViolationError) as exc_info:
            normalizer.normalize_rows("Detail", [{"report_date": "03/13/2020", "head_count": "1"}])

        assert exc_info.value.context["column"] == "class_description"

    def test_null_independent_row_skipped(self, cattle_schema):
        normalizer = DatamartNormalizer("2466", cattle_schema)

        records = normalizer.normalize_rows("Detail", [
            {"report_date": "03/13/2020", "class_description": None, "head_count": "1"},
            {"report_date": "03/13/2020", "class_description": "STEER", "head_count": "2"},
        ])

        assert [r.entries["head_count"] for r in records] == ["2"]

    def test_missing_field_is_empty(self, cattle_schema):
        normalizer = DatamartNormalizer("2466", cattle_schema)

        records = normalizer.normalize_rows("Summary", [{"report_date": "03/13/2020"}])

        assert records[0].entries == {"previous_day_head_count": ""}


class TestDatamartExtractor:
    """Test section fetches"""

    def test_build_url(self, cattle_schema):
        extractor = DatamartExtractor("2466", cattle_schema, base_url=BASE_URL)

        assert extractor.build_url("Summary", DateMode.on(date(2020, 3, 13))) == (
            f"{BASE_URL}/2466/Summary?q=report_date=03/13/2020"
        )
        assert extractor.build_url("Summary", DateMode.since(date(2020, 3, 1), until=date(2020, 3, 13))) == (
            f"{BASE_URL}/2466/Summary?q=report_date=03/01/2020:03/13/2020"
        )
        assert extractor.build_url("Summary", DateMode.unfiltered()) == f"{BASE_URL}/2466/Summary"

    def test_build_url_quotes_section(self):
        from schemas.report import ReportSchema, SectionSchema

        schema = ReportSchema(
            name="lm_ct153",
            independent="report_date",
            sections={"C. Forward Contract Purchases": SectionSchema(
                alias="forward_contract_purchases", independent=("report_date",)
            )},
        )
        extractor = DatamartExtractor("2480", schema, base_url=BASE_URL)

        url = extractor.build_url("C. Forward Contract Purchases", DateMode.unfiltered())

        assert url == f"{BASE_URL}/2480/C.%20Forward%20Contract%20Purchases"

    @pytest.mark.asyncio
    async def test_fetch_all_sections(self, cattle_schema, mock_datamart_rows):
        extractor = DatamartExtractor("2466", cattle_schema, base_url=BASE_URL)

        with patch("httpx.AsyncClient") as mock_client_class:
            client = mock_client(mock_client_class, [
                json_response({"results": [{"report_date": "03/13/2020", "previous_day_head_count": "45,000"}]}),
                json_response({"stats": {"returnedRows:": 3}, "results": mock_datamart_rows}),
            ])

            package = await extractor.fetch(DateMode.since(date(2020, 3, 1), until=date(2020, 3, 13)))

        assert client.get.await_count == 2
        assert client.get.await_args_list[0].args[0].endswith("/2466/Summary?q=report_date=03/01/2020:03/13/2020")
        assert package.name == "lm_ct100"
        assert len(package.sections["Summary"]) == 1
        assert len(package.sections["Detail"]) == 2
        assert package.sections["Summary"][0].entries["previous_day_head_count"] == "45,000"

    @pytest.mark.asyncio
    async def test_row_cap_warning(self, cattle_schema, caplog):
        extractor = DatamartExtractor("2466", cattle_schema, base_url=BASE_URL)
        capped = {"stats": {"returnedRows:": 10001, "userAllowedRows:": 10000}, "results": []}

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client(mock_client_class, [json_response(capped), json_response(capped)])

            with caplog.at_level(logging.WARNING):
                await extractor.fetch(DateMode.unfiltered())

        assert "there may be additional data available" in caplog.text

    @pytest.mark.asyncio
    async def test_transport_failure_aborts_report(self, cattle_schema):
        extractor = DatamartExtractor("2466", cattle_schema, base_url=BASE_URL)

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client(mock_client_class, [
                json_response({"results": []}),
                httpx.ReadTimeout("timed out"),
            ])

            with pytest.raises(TransportError) as exc_info:
                await extractor.fetch(DateMode.unfiltered())

        assert exc_info.value.context["source_id"] == "2466"

    @pytest.mark.asyncio
    async def test_error_status(self, cattle_schema):
        extractor = DatamartExtractor("2466", cattle_schema, base_url=BASE_URL)

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client(mock_client_class, [json_response({"message": "down"}, status_code=503)])

            with pytest.raises(TransportError) as exc_info:
                await extractor.fetch(DateMode.unfiltered())

        assert exc_info.value.context["status_code"] == 503

    @pytest.mark.asyncio
    async def test_invalid_json(self, cattle_schema):
        extractor = DatamartExtractor("2466", cattle_schema, base_url=BASE_URL)
        response = httpx.Response(200, text="<html>maintenance</html>", request=httpx.Request("GET", BASE_URL))

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client(mock_client_class, [response])

            with pytest.raises(FormatError):
                await extractor.fetch(DateMode.unfiltered())

    @pytest.mark.asyncio
    async def test_missing_results(self, cattle_schema):
        extractor = DatamartExtractor("2466", cattle_schema, base_url=BASE_URL)

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client(mock_client_class, [json_response({"message": "No results found"})])

            with pytest.raises(FormatError):
                await extractor.fetch(DateMode.unfiltered())


class TestLivenessProbe:

    @pytest.mark.asyncio
    async def test_probe_success(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            client = mock_client(mock_client_class, [json_response({"results": []})])

            await check_datamart(BASE_URL)

        assert client.get.await_args.args[0] == f"{BASE_URL}/2451/?q=report_date=01/01/2020"
        assert mock_client_class.call_args.kwargs["timeout"].read == 3.0

    @pytest.mark.asyncio
    async def test_unavailable(self, cattle_schema):
        extractor = DatamartExtractor("2466", cattle_schema, base_url=BASE_URL)

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client(mock_client_class, [httpx.ConnectError("refused")])

            assert await extractor.is_available() is False
