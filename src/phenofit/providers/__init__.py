"""Crop-calendar providers.

Provides ``get_provider()`` to instantiate a calendar source by name.
Only the FAO Crop Calendar API is registered.
"""

from __future__ import annotations

from typing import Any

from phenofit.exceptions import ConfigurationError
from phenofit.providers.base import CropCalendarProvider, ProviderStatus
from phenofit.providers.calendar import COMMON_CROPS, day_of_year, extract_season_bounds
from phenofit.providers.fao import FAOCropCalendar

_PROVIDER_REGISTRY: dict[str, type[CropCalendarProvider]] = {
    "fao": FAOCropCalendar,
}


def get_provider(name: str, **kwargs: Any) -> CropCalendarProvider:
    """Return a calendar provider instance by (case-insensitive) name.

    Raises:
        ConfigurationError: If *name* does not match a registered provider.

    Example:
        >>> get_provider("FAO").name
        'fao'
    """
    key = name.lower()
    if key not in _PROVIDER_REGISTRY:
        valid = ", ".join(sorted(_PROVIDER_REGISTRY))
        raise ConfigurationError(
            what=f"Unknown provider: {name!r}",
            cause=f"Valid providers are: {valid}",
            fix=f"Use one of: {valid}",
        )
    return _PROVIDER_REGISTRY[key](**kwargs)


__all__ = [
    "COMMON_CROPS",
    "CropCalendarProvider",
    "FAOCropCalendar",
    "ProviderStatus",
    "day_of_year",
    "extract_season_bounds",
    "get_provider",
]
