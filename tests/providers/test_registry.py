"""Tests for the provider registry."""

from __future__ import annotations

import pytest

from phenofit.exceptions import ConfigurationError
from phenofit.providers import FAOCropCalendar, get_provider
from phenofit.providers.base import CropCalendarProvider


@pytest.mark.unit
class TestGetProvider:
    """Verify lookup by name."""

    @pytest.mark.parametrize("name", ["fao", "FAO", "Fao"])
    def test_case_insensitive(self, name: str) -> None:
        provider = get_provider(name)
        assert isinstance(provider, FAOCropCalendar)
        assert isinstance(provider, CropCalendarProvider)

    def test_kwargs_forwarded(self) -> None:
        provider = get_provider("fao", timeout=5)
        assert provider._timeout == 5  # type: ignore[attr-defined]

    def test_unknown_name(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown provider") as exc_info:
            get_provider("usda")
        assert "fao" in exc_info.value.cause
