"""
Error and warning taxonomy shared by the summary and validation modules.

Structural problems (missing columns, invalid parameters) abort a call
immediately. Per-element problems inside a batch (one species' threshold fit,
one species' sample) are reported with a warning and omitted from the result.
"""

from typing import Iterable, List, Optional


class EcoacousticsError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(EcoacousticsError, ValueError):
    """
    Required columns are absent or a parameter is not among its allowed values.

    The message always lists every missing or invalid item at once; the items
    themselves are kept on ``items`` for programmatic access.
    """

    def __init__(self, message: str, items: Optional[Iterable[str]] = None):
        self.items: List[str] = list(items) if items is not None else []
        super().__init__(message)


class ParseError(EcoacousticsError, ValueError):
    """A timestamp, date or label value could not be resolved."""

    def __init__(self, message: str, value=None):
        self.value = value
        super().__init__(message)


class DataError(EcoacousticsError, ValueError):
    """
    The data cannot support the requested computation.

    Raised for empty inputs, zero rows left after filtering, groups with
    undefined statistics and zero-length recording periods.
    """


class PartialFailureWarning(UserWarning):
    """One element of a batch failed and was left out of the result."""


class LowConfidenceWarning(UserWarning):
    """A result was computed from too few observations to be reliable."""


class SamplingShortfallWarning(UserWarning):
    """Fewer samples than requested could be drawn for a species."""


def missing_columns_error(missing: List[str], context: str = "dataframe") -> ConfigurationError:
    """Build the single combined error for a list of absent columns."""
    return ConfigurationError(
        f"Missing required columns in {context}: {', '.join(missing)}",
        items=missing,
    )
