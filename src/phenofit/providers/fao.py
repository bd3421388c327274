"""FAO crop-calendar API client."""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from typing import Any

import requests

from phenofit.exceptions import ProviderError
from phenofit.providers.base import CropCalendarProvider, ProviderStatus

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# FAO API constants
# ---------------------------------------------------------------------------

FAO_API_URL = "https://api-cropcalendar.apps.fao.org/api/v1"
_LANGUAGE = "en"

# ---------------------------------------------------------------------------
# Timeout constants
# ---------------------------------------------------------------------------

_DEFAULT_TIMEOUT = 30  # seconds
_STATUS_TIMEOUT = 10  # shorter timeout for status checks

# ---------------------------------------------------------------------------
# Retry constants
# ---------------------------------------------------------------------------

_MAX_RETRIES = 3
_INITIAL_BACKOFF = 1.0  # seconds
_MAX_BACKOFF = 60.0  # seconds
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 408})
_SUCCESS_STATUS_CODES = frozenset({200, 204})
_NO_CONTENT = 204


class FAOCropCalendar(CropCalendarProvider):
    """Client for the FAO Crop Calendar API.

    The API is public and needs no credentials. Country codes are ISO
    3166-1 alpha-2; crop ids are FAO codes such as ``"0373"`` (wheat).

    Args:
        base_url: API root.
        timeout: Per-request timeout in seconds.
        session: Optional pre-configured ``requests.Session``.

    Example:
        >>> provider = FAOCropCalendar()
        >>> provider.name
        'fao'
    """

    _name: str = "fao"

    def __init__(
        self,
        base_url: str = FAO_API_URL,
        timeout: float = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session: requests.Session = session if session is not None else requests.Session()

    def fetch_countries(self) -> list[dict[str, Any]]:
        """List countries covered by the calendar (``id``/``name`` dicts)."""
        return self._get_list(f"{self._base_url}/countries", {"language": _LANGUAGE})

    def fetch_crops(self, country: str) -> list[dict[str, Any]]:
        """List crops with a calendar in ``country`` (``crop_id``/``crop_name`` dicts).

        An unknown country yields an empty list.
        """
        url = f"{self._base_url}/countries/{country}/crops"
        return self._get_list(url, {"language": _LANGUAGE})

    def fetch_calendar(self, country: str, crop_id: str) -> list[dict[str, Any]]:
        """Fetch calendar entries for one crop in one country.

        Each entry has ``crop``, an optional ``aez`` and ``sessions``
        with ``early_sowing``/``later_sowing``/``early_harvest``/
        ``late_harvest`` month-day fields.

        Raises:
            ProviderError: If the request fails after retries or the
                response is not JSON.
        """
        url = f"{self._base_url}/countries/{country}/cropCalendar"
        entries = self._get_list(url, {"crop": crop_id, "language": _LANGUAGE})
        logger.info(
            "FAO calendar for crop %s in %s: %d entries", crop_id, country, len(entries)
        )
        return entries

    def check_status(self) -> ProviderStatus:
        """Check FAO API operational status. Never raises.

        Example:
            >>> FAOCropCalendar().check_status().available  # doctest: +SKIP
            True
        """
        checked = datetime.now(timezone.utc).isoformat()
        try:
            resp = self._session.get(
                f"{self._base_url}/countries",
                params={"language": _LANGUAGE},
                timeout=_STATUS_TIMEOUT,
            )
            if resp.status_code in _SUCCESS_STATUS_CODES:
                return ProviderStatus(available=True, last_checked=checked)
            return ProviderStatus(
                available=False,
                message=f"FAO returned HTTP {resp.status_code}",
                last_checked=checked,
            )
        except requests.RequestException as exc:
            return ProviderStatus(
                available=False,
                message=f"FAO API unreachable: {exc}",
                last_checked=checked,
            )

    def _get_list(self, url: str, params: dict[str, str]) -> list[dict[str, Any]]:
        resp = self._retry_request("get", url, params=params)
        if resp.status_code == _NO_CONTENT:
            return []
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError(
                what="FAO crop calendar request failed",
                cause="Invalid JSON response",
                fix="Try again; if persistent, check the FAO API status",
            ) from exc
        if not isinstance(data, list):
            raise ProviderError(
                what="FAO crop calendar request failed",
                cause=f"Expected a JSON list, got {type(data).__name__}",
                fix="Check that the base URL points at the v1 API",
            )
        return data

    def _retry_request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> requests.Response:
        """Execute HTTP request with retry and exponential backoff.

        Raises:
            ProviderError: On a non-retryable status or once retries
                are exhausted.
        """
        kwargs.setdefault("timeout", self._timeout)
        last_status: int = 0
        last_exc: requests.RequestException | None = None

        for attempt in range(_MAX_RETRIES):
            try:
                resp = self._session.request(method, url, **kwargs)
                last_exc = None

                if resp.status_code in _SUCCESS_STATUS_CODES:
                    return resp

                last_status = resp.status_code

                if resp.status_code not in _RETRYABLE_STATUS_CODES:
                    raise ProviderError(
                        what="FAO crop calendar request failed",
                        cause=f"HTTP {resp.status_code}",
                        fix="Check the country code and crop id",
                    )

                if attempt < _MAX_RETRIES - 1:
                    backoff = self._compute_backoff(attempt)
                    logger.warning(
                        "FAO request failed (HTTP %d, attempt %d/%d), retrying in %.1fs...",
                        resp.status_code,
                        attempt + 1,
                        _MAX_RETRIES,
                        backoff,
                    )
                    time.sleep(backoff)

            except ProviderError:
                raise
            except requests.RequestException as exc:
                last_exc = exc
                if attempt < _MAX_RETRIES - 1:
                    backoff = self._compute_backoff(attempt)
                    logger.warning(
                        "FAO request failed (%s, attempt %d/%d), retrying in %.1fs...",
                        type(exc).__name__,
                        attempt + 1,
                        _MAX_RETRIES,
                        backoff,
                    )
                    time.sleep(backoff)

        if last_exc is not None:
            raise ProviderError(
                what="FAO crop calendar request failed after retries",
                cause=str(last_exc),
                fix="Check internet connection and try again",
            ) from last_exc

        raise ProviderError(
            what="FAO crop calendar request failed after retries",
            cause=f"HTTP {last_status} after {_MAX_RETRIES} attempts",
            fix="The FAO API may be overloaded; try again later",
        )

    @staticmethod
    def _compute_backoff(attempt: int) -> float:
        """Exponential backoff with up to 10% jitter."""
        base_delay: float = min(_INITIAL_BACKOFF * (2**attempt), _MAX_BACKOFF)
        jitter: float = random.uniform(0, base_delay * 0.1)  # noqa: S311
        return float(base_delay + jitter)
