"""Tests for core error hierarchy."""

import pytest

from artifactos.core.errors import (
    ArtifactOSError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ReclamationError,
    RequestValidationError,
    StorageError,
)


class TestErrorHierarchy:
    def test_base_error_is_exception(self) -> None:
        assert issubclass(ArtifactOSError, Exception)

    @pytest.mark.parametrize(
        "error",
        [RequestValidationError, ConflictError, NotFoundError, StorageError, ReclamationError],
    )
    def test_is_artifactos_error(self, error: type[Exception]) -> None:
        assert issubclass(error, ArtifactOSError)

    def test_invalid_transition_is_conflict(self) -> None:
        assert issubclass(InvalidTransitionError, ConflictError)


class TestErrorRaising:
    def test_raise_conflict(self) -> None:
        with pytest.raises(ConflictError, match="duplicate"):
            raise ConflictError("duplicate external id")

    def test_catch_transition_as_conflict(self) -> None:
        with pytest.raises(ConflictError):
            raise InvalidTransitionError("completed -> accepted")

    def test_catch_all_via_base(self) -> None:
        with pytest.raises(ArtifactOSError):
            raise StorageError("caught by base")
