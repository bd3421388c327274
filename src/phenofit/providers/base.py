"""Crop-calendar provider contract and shared types.

Defines the ``CropCalendarProvider`` abstract base class. Providers are
the network-facing collaborators that turn a country and crop into the
sowing/harvest windows used to narrow optimizer bounds.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from phenofit.bounds import SeasonBounds
from phenofit.providers.calendar import extract_season_bounds


@dataclass
class ProviderStatus:
    """Operational status of a crop-calendar provider.

    Returned by ``CropCalendarProvider.check_status()``.

    Args:
        available: ``True`` if the provider is operational.
        message: Human-readable status message (empty when healthy).
        last_checked: ISO-8601 timestamp of the check.

    Example:
        >>> status = ProviderStatus(available=True)
        >>> status.message
        ''
    """

    available: bool = False
    message: str = ""
    last_checked: str = ""


class CropCalendarProvider(ABC):
    """Abstract base class for crop-calendar sources.

    Subclasses implement ``fetch_calendar`` and ``check_status`` and set
    ``_name``. ``season_bounds`` is shared.
    """

    _name: str = ""

    @property
    def name(self) -> str:
        """Provider identifier."""
        return self._name

    @abstractmethod
    def fetch_calendar(self, country: str, crop_id: str) -> list[dict[str, Any]]:
        """Return raw calendar entries for a country and crop.

        Returns an empty list when the provider has no calendar for the
        pair. Raises only on infrastructure failures.

        Args:
            country: ISO 3166-1 alpha-2 country code.
            crop_id: Provider crop identifier (e.g. FAO ``"0373"``).

        Raises:
            ProviderError: If the request fails after retries.
        """
        ...

    @abstractmethod
    def check_status(self) -> ProviderStatus:
        """Check provider operational status.

        Never raises; returns ``available=False`` with a message instead.
        """
        ...

    def season_bounds(self, country: str, crop_id: str) -> SeasonBounds | None:
        """Fetch a calendar and reduce it to sowing/harvest windows.

        Returns:
            The widest windows across all zones and sessions, or ``None``
            when the calendar has no usable dates.
        """
        return extract_season_bounds(self.fetch_calendar(country, crop_id))
