"""Tests for the FAO crop-calendar client."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests

from phenofit.exceptions import ProviderError
from phenofit.providers.base import ProviderStatus
from phenofit.providers.fao import (
    _INITIAL_BACKOFF,
    _MAX_BACKOFF,
    _MAX_RETRIES,
    _STATUS_TIMEOUT,
    FAO_API_URL,
    FAOCropCalendar,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _response(status_code: int = 200, payload: Any = None) -> MagicMock:
    """Return a mock Response with the given status and JSON payload."""
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.json.return_value = [] if payload is None else payload
    return resp


@pytest.fixture
def session() -> MagicMock:
    """Create a mock requests session."""
    return MagicMock(spec=requests.Session)


@pytest.fixture
def provider(session: MagicMock) -> FAOCropCalendar:
    """Create a client bound to the mock session."""
    return FAOCropCalendar(session=session)


CALENDAR = [
    {
        "crop": {"id": "0373", "name": "Wheat"},
        "aez": {"id": "1", "name": "Lowlands"},
        "sessions": [
            {
                "early_sowing": {"month": "09", "day": "20"},
                "later_sowing": {"month": "10", "day": "20"},
                "early_harvest": {"month": "07", "day": "10"},
                "late_harvest": {"month": "08", "day": "10"},
            }
        ],
    }
]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestFetch:
    """Verify URLs, parameters and payload handling."""

    def test_name(self, provider: FAOCropCalendar) -> None:
        assert provider.name == "fao"

    def test_fetch_calendar_request(self, provider: FAOCropCalendar, session: MagicMock) -> None:
        session.request.return_value = _response(payload=CALENDAR)
        entries = provider.fetch_calendar("PL", "0373")
        assert entries == CALENDAR
        session.request.assert_called_once()
        method, url = session.request.call_args.args
        assert method == "get"
        assert url == f"{FAO_API_URL}/countries/PL/cropCalendar"
        assert session.request.call_args.kwargs["params"] == {"crop": "0373", "language": "en"}
        assert session.request.call_args.kwargs["timeout"] == 30

    def test_fetch_countries(self, provider: FAOCropCalendar, session: MagicMock) -> None:
        session.request.return_value = _response(payload=[{"id": "PL", "name": "Poland"}])
        assert provider.fetch_countries()[0]["id"] == "PL"
        assert session.request.call_args.args[1].endswith("/countries")

    def test_fetch_crops(self, provider: FAOCropCalendar, session: MagicMock) -> None:
        session.request.return_value = _response(payload=[{"crop_id": "0373"}])
        assert provider.fetch_crops("PL") == [{"crop_id": "0373"}]
        assert session.request.call_args.args[1].endswith("/countries/PL/crops")

    def test_no_content_is_empty(self, provider: FAOCropCalendar, session: MagicMock) -> None:
        session.request.return_value = _response(204)
        assert provider.fetch_calendar("XX", "0373") == []

    def test_custom_base_url(self, session: MagicMock) -> None:
        session.request.return_value = _response()
        FAOCropCalendar(base_url="http://localhost:8000/api/", session=session).fetch_countries()
        assert session.request.call_args.args[1] == "http://localhost:8000/api/countries"

    def test_invalid_json(self, provider: FAOCropCalendar, session: MagicMock) -> None:
        resp = _response()
        resp.json.side_effect = ValueError("no json")
        session.request.return_value = resp
        with pytest.raises(ProviderError, match="Invalid JSON"):
            provider.fetch_calendar("PL", "0373")

    def test_non_list_payload(self, provider: FAOCropCalendar, session: MagicMock) -> None:
        session.request.return_value = _response(payload={"detail": "oops"})
        with pytest.raises(ProviderError, match="JSON list"):
            provider.fetch_calendar("PL", "0373")

    def test_season_bounds_from_calendar(
        self, provider: FAOCropCalendar, session: MagicMock
    ) -> None:
        session.request.return_value = _response(payload=CALENDAR)
        season = provider.season_bounds("PL", "0373")
        assert season is not None
        assert season.crop_name == "Wheat"
        assert season.aez_name == "Lowlands"


# ---------------------------------------------------------------------------
# Retry behaviour
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestRetry:
    """Verify retry with backoff and terminal failures."""

    @patch("phenofit.providers.fao.time.sleep")
    def test_retries_then_succeeds(
        self, mock_sleep: MagicMock, provider: FAOCropCalendar, session: MagicMock
    ) -> None:
        session.request.side_effect = [_response(503), _response(payload=CALENDAR)]
        assert provider.fetch_calendar("PL", "0373") == CALENDAR
        assert session.request.call_count == 2
        mock_sleep.assert_called_once()

    @patch("phenofit.providers.fao.time.sleep")
    def test_retries_exhausted(
        self, mock_sleep: MagicMock, provider: FAOCropCalendar, session: MagicMock
    ) -> None:
        session.request.return_value = _response(503)
        with pytest.raises(ProviderError, match="503"):
            provider.fetch_calendar("PL", "0373")
        assert session.request.call_count == _MAX_RETRIES
        assert mock_sleep.call_count == _MAX_RETRIES - 1

    @patch("phenofit.providers.fao.time.sleep")
    def test_non_retryable_status(
        self, mock_sleep: MagicMock, provider: FAOCropCalendar, session: MagicMock
    ) -> None:
        session.request.return_value = _response(404)
        with pytest.raises(ProviderError, match="HTTP 404"):
            provider.fetch_calendar("PL", "0373")
        assert session.request.call_count == 1
        mock_sleep.assert_not_called()

    @patch("phenofit.providers.fao.time.sleep")
    def test_connection_errors(
        self, mock_sleep: MagicMock, provider: FAOCropCalendar, session: MagicMock
    ) -> None:
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ProviderError, match="refused") as exc_info:
            provider.fetch_calendar("PL", "0373")
        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)
        assert session.request.call_count == _MAX_RETRIES

    @patch("phenofit.providers.fao.time.sleep")
    def test_reports_last_status_after_connection_error(
        self, mock_sleep: MagicMock, provider: FAOCropCalendar, session: MagicMock
    ) -> None:
        session.request.side_effect = [
            requests.ConnectionError("refused"),
            *[_response(503)] * (_MAX_RETRIES - 1),
        ]
        with pytest.raises(ProviderError, match="HTTP 503") as exc_info:
            provider.fetch_calendar("PL", "0373")
        assert "refused" not in str(exc_info.value)
        assert exc_info.value.__cause__ is None

    @pytest.mark.parametrize("attempt", [0, 1, 2, 10])
    def test_backoff_bounds(self, attempt: int) -> None:
        base = min(_INITIAL_BACKOFF * 2**attempt, _MAX_BACKOFF)
        delay = FAOCropCalendar._compute_backoff(attempt)
        assert base <= delay <= base * 1.1


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestCheckStatus:
    """Verify status checks never raise."""

    def test_available(self, provider: FAOCropCalendar, session: MagicMock) -> None:
        session.get.return_value = _response(200)
        status = provider.check_status()
        assert isinstance(status, ProviderStatus)
        assert status.available is True
        assert status.last_checked
        assert session.get.call_args.kwargs["timeout"] == _STATUS_TIMEOUT

    def test_http_error(self, provider: FAOCropCalendar, session: MagicMock) -> None:
        session.get.return_value = _response(500)
        status = provider.check_status()
        assert status.available is False
        assert "500" in status.message

    def test_unreachable(self, provider: FAOCropCalendar, session: MagicMock) -> None:
        session.get.side_effect = requests.Timeout("slow")
        status = provider.check_status()
        assert status.available is False
        assert "unreachable" in status.message
