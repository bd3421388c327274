"""Crop-calendar parsing: sowing/harvest dates to season windows."""

from __future__ import annotations

import datetime
from collections.abc import Sequence
from typing import Any

from phenofit.bounds import SeasonBounds

# Month/day pairs are converted in a leap year so 29 February is valid.
_REFERENCE_YEAR = 2024

# Width assumed for a window with only one published edge.
_DEFAULT_WINDOW_DAYS = 30

COMMON_CROPS: dict[str, str] = {
    "0373": "Wheat",
    "0113": "Maize",
    "0303": "Rice",
    "0327": "Soybean",
    "0024": "Barley",
    "0325": "Sorghum",
    "0362": "Cotton",
    "0335": "Sunflower",
    "0283": "Potato",
    "0334": "Sugarcane",
    "0087": "Chickpea",
    "0200": "Lentil",
    "0262": "Groundnut",
}
"""FAO crop ids of frequently used crops; the full list is per country."""


def day_of_year(month: Any, day: Any) -> int | None:
    """Convert month/day values (strings or ints) to a day of year.

    Returns ``None`` for anything that is not a real calendar date.

    Example:
        >>> day_of_year("03", "01")
        61
        >>> day_of_year("13", "01") is None
        True
    """
    try:
        date = datetime.date(_REFERENCE_YEAR, int(month), int(day))
    except (TypeError, ValueError):
        return None
    return date.timetuple().tm_yday


def _field_doy(session: dict[str, Any], key: str) -> int | None:
    value = session.get(key)
    if not isinstance(value, dict):
        return None
    return day_of_year(value.get("month"), value.get("day"))


def extract_season_bounds(entries: Sequence[dict[str, Any]]) -> SeasonBounds | None:
    """Reduce calendar entries to the widest sowing and harvest windows.

    Every session of every agro-ecological zone contributes. When only
    the early sowing date is published the late sowing date defaults to
    30 days after it; a missing early harvest defaults to 30 days
    before the late harvest.

    Args:
        entries: Calendar entries as returned by the FAO API, each with
            ``crop``, optional ``aez`` and a list of ``sessions``.

    Returns:
        ``SeasonBounds``, or ``None`` when no sowing start or harvest end
        could be read.
    """
    sos_min, sos_max = 366, 0
    eos_min, eos_max = 366, 0
    crop_name = ""
    aez_name: str | None = None

    for entry in entries:
        if not crop_name:
            crop_name = str((entry.get("crop") or {}).get("name", ""))
        if len(entries) == 1:
            aez = entry.get("aez") or {}
            aez_name = aez.get("name")

        for session in entry.get("sessions") or []:
            doy = _field_doy(session, "early_sowing")
            if doy is not None:
                sos_min = min(sos_min, doy)
            doy = _field_doy(session, "later_sowing")
            if doy is not None:
                sos_max = max(sos_max, doy)
            doy = _field_doy(session, "early_harvest")
            if doy is not None:
                eos_min = min(eos_min, doy)
            doy = _field_doy(session, "late_harvest")
            if doy is not None:
                eos_max = max(eos_max, doy)

    if sos_min >= 366 or eos_max <= 0:
        return None
    if sos_max == 0:
        sos_max = sos_min + _DEFAULT_WINDOW_DAYS
    if eos_min == 366:
        eos_min = eos_max - _DEFAULT_WINDOW_DAYS

    return SeasonBounds(
        sos_min=sos_min,
        sos_max=sos_max,
        eos_min=eos_min,
        eos_max=eos_max,
        crop_name=crop_name,
        aez_name=aez_name,
    )
