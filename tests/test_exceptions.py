"""Tests for the phenofit exception hierarchy."""

from __future__ import annotations

import pytest

from phenofit.exceptions import (
    ConfigurationError,
    FitCancelledError,
    InconsistentBoundsError,
    InsufficientDataError,
    PhenofitError,
    ProviderError,
)

ALL_EXCEPTION_CLASSES = [
    PhenofitError,
    ConfigurationError,
    InconsistentBoundsError,
    InsufficientDataError,
    FitCancelledError,
    ProviderError,
]

SUBCLASS_EXCEPTION_CLASSES = ALL_EXCEPTION_CLASSES[1:]


@pytest.mark.unit
class TestExceptionInheritance:
    """Verify the exception inheritance chain."""

    def test_base_inherits_from_exception(self) -> None:
        assert issubclass(PhenofitError, Exception)

    @pytest.mark.parametrize(
        "exc_cls",
        SUBCLASS_EXCEPTION_CLASSES,
        ids=lambda c: c.__name__,
    )
    def test_subclass_inherits_from_base(self, exc_cls: type[PhenofitError]) -> None:
        assert issubclass(exc_cls, PhenofitError)

    def test_inconsistent_bounds_is_configuration_error(self) -> None:
        assert issubclass(InconsistentBoundsError, ConfigurationError)

    def test_not_a_value_error(self) -> None:
        assert not issubclass(InconsistentBoundsError, ValueError)


@pytest.mark.unit
class TestThreePartMessage:
    """Verify the three-part message pattern (what, cause, fix)."""

    @pytest.mark.parametrize(
        "exc_cls",
        ALL_EXCEPTION_CLASSES,
        ids=lambda c: c.__name__,
    )
    def test_full_message(self, exc_cls: type[PhenofitError]) -> None:
        exc = exc_cls(what="Fit failed", cause="Bad input", fix="Check your data")
        lines = str(exc).split("\n")
        assert lines == ["Fit failed", "Cause: Bad input", "Fix: Check your data"]

    @pytest.mark.parametrize(
        "exc_cls",
        ALL_EXCEPTION_CLASSES,
        ids=lambda c: c.__name__,
    )
    def test_what_only_message(self, exc_cls: type[PhenofitError]) -> None:
        assert str(exc_cls(what="Something broke")) == "Something broke"

    def test_message_omits_empty_cause(self) -> None:
        msg = str(PhenofitError(what="Failed", fix="Retry"))
        assert "Cause:" not in msg
        assert "Fix: Retry" in msg

    def test_attributes_stored(self) -> None:
        exc = FitCancelledError(what="W", cause="C", fix="F")
        assert (exc.what, exc.cause, exc.fix) == ("W", "C", "F")


@pytest.mark.unit
class TestExceptionCatchability:
    """Verify exceptions can be caught by base class."""

    @pytest.mark.parametrize(
        "exc_cls",
        SUBCLASS_EXCEPTION_CLASSES,
        ids=lambda c: c.__name__,
    )
    def test_catch_by_base_class(self, exc_cls: type[PhenofitError]) -> None:
        with pytest.raises(PhenofitError):
            raise exc_cls(what="test")

    def test_raise_and_catch_preserves_message(self) -> None:
        try:
            raise ProviderError(what="FAO failed", cause="HTTP 503", fix="Retry")
        except PhenofitError as exc:
            assert exc.what == "FAO failed"
            assert "Cause: HTTP 503" in str(exc)
