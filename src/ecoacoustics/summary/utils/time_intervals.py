"""
Timestamp resolution and interval flooring utilities for detection tables.

This module turns the heterogeneous date/time encodings of detection exports
into absolute detection instants, and floors those instants to a detection
interval that serves as the deduplication key of the vocal activity engine.
"""

import re
from typing import Optional, Tuple

import pandas as pd
from pandas.api import types as ptypes
from pandas.tseries.frequencies import to_offset

from ... import config
from ...exceptions import ConfigurationError, ParseError


_INTERVAL_PATTERN = re.compile(r'^\s*(\d+)?\s*([a-zA-Z]+)\s*$')

_FIXED_UNITS = {
    'second': 'seconds',
    'minute': 'minutes',
    'hour': 'hours',
    'day': 'days',
}


def parse_interval_unit(interval_unit: str) -> Tuple[int, str]:
    """
    Parse an interval specification such as "minute", "15 minutes" or "2 hours".

    Args:
        interval_unit: Interval specification

    Returns:
        Tuple of (multiple, singular unit name)
    """
    match = _INTERVAL_PATTERN.match(str(interval_unit))
    if match is None:
        raise ConfigurationError(
            f"Invalid interval unit '{interval_unit}'. Choose from: {', '.join(config.INTERVAL_UNITS)} "
            f"(optionally with a multiple, e.g. '15 minutes')",
            items=[str(interval_unit)],
        )

    multiple = int(match.group(1)) if match.group(1) else 1
    unit = match.group(2).lower()
    if unit.endswith('s') and unit[:-1] in config.INTERVAL_UNITS:
        unit = unit[:-1]
    elif unit in ('min', 'mins'):
        unit = 'minute'

    if unit not in config.INTERVAL_UNITS or multiple < 1:
        raise ConfigurationError(
            f"Invalid interval unit '{interval_unit}'. Choose from: {', '.join(config.INTERVAL_UNITS)} "
            f"(optionally with a multiple, e.g. '15 minutes')",
            items=[str(interval_unit)],
        )
    if unit == 'week' and multiple > 1:
        raise ConfigurationError(
            f"Invalid interval unit '{interval_unit}'. Multiples of weeks are not supported",
            items=[str(interval_unit)],
        )
    return multiple, unit


def floor_to_interval(times: pd.Series, interval_unit: str) -> pd.Series:
    """
    Floor detection instants to the start of their detection interval.

    Sub-daily and daily multiples are aligned to the epoch, weeks start on
    Sunday, months are grouped within their year and years by their number.

    Args:
        times: Series of datetime64 values
        interval_unit: Interval specification (see parse_interval_unit)

    Returns:
        Series of interval start instants
    """
    multiple, unit = parse_interval_unit(interval_unit)

    if unit in _FIXED_UNITS:
        offset = to_offset(pd.Timedelta(**{_FIXED_UNITS[unit]: multiple}))
        return times.dt.floor(offset)

    if unit == 'week':
        # weeks ending on Saturday start on Sunday
        return times.dt.to_period('W-SAT').dt.start_time

    if unit == 'month':
        month = (times.dt.month - 1) // multiple * multiple + 1
        return pd.to_datetime(pd.DataFrame({'year': times.dt.year, 'month': month, 'day': 1}))

    year = times.dt.year // multiple * multiple
    return pd.to_datetime(pd.DataFrame({'year': year, 'month': 1, 'day': 1}))


def _first_unparsed(raw: pd.Series, parsed: pd.Series):
    failed = parsed.isna() & raw.notna()
    if failed.any():
        return raw[failed].iloc[0]
    return None


def _parse_dates(dates: pd.Series) -> pd.Series:
    missing = dates.isna()
    if missing.any():
        row = dates.index[missing][0]
        raise ParseError(f"Missing detection date in column '{dates.name}' at row {row}", value=None)

    if ptypes.is_datetime64_any_dtype(dates):
        return dates.dt.normalize()

    parsed = pd.to_datetime(dates.astype('string'), errors='coerce', format=config.DATE_FORMAT)
    if parsed.isna().any():
        # other ISO style encodings, e.g. 20240501
        parsed = pd.to_datetime(dates.astype('string'), errors='coerce', format='ISO8601')

    offending = _first_unparsed(dates, parsed)
    if offending is not None:
        raise ParseError(f"Unable to parse date value: {offending!r}", value=offending)
    return parsed.dt.normalize()


def _time_strings(times: pd.Series) -> pd.Series:
    if ptypes.is_integer_dtype(times) or ptypes.is_float_dtype(times):
        # numeric HHMMSS loses its leading zeros
        whole = times.round().astype('Int64')
        return whole.astype('string')
    return times.astype('string').str.strip()


def resolve_detection_times(df: pd.DataFrame, time_col: str, date_col: Optional[str] = None,
                            time_format: Optional[str] = None) -> pd.Series:
    """
    Resolve the detection instant of every row of a detection table.

    A datetime time column is used as is. Otherwise, when the date column is
    present, the date and time are combined: the time format is taken from
    ``time_format`` or auto-detected as colon delimited (HH:MM:SS) or compact
    six digit (HHMMSS). Without a date column the time column must hold
    complete timestamps.

    Args:
        df: Detection table
        time_col: Column with detection times or timestamps
        date_col: Column with detection dates, if separate from the time
        time_format: strptime format of the time column (without the date part)

    Returns:
        Series of datetime64 detection instants aligned with df
    """
    times = df[time_col]

    missing = times.isna()
    if missing.any():
        row = times.index[missing][0]
        raise ParseError(f"Missing detection time in column '{time_col}' at row {row}", value=None)

    if ptypes.is_datetime64_any_dtype(times):
        return times

    if date_col is not None and date_col in df.columns:
        dates = _parse_dates(df[date_col])

        if ptypes.is_timedelta64_dtype(times):
            return dates + times

        time_strings = _time_strings(times)
        if time_format is None:
            if time_strings.str.contains(':', regex=False).any():
                time_format = config.COLON_TIME_FORMAT
            else:
                time_strings = time_strings.str.zfill(6)
                time_format = config.COMPACT_TIME_FORMAT

        combined = dates.dt.strftime(config.DATE_FORMAT) + ' ' + time_strings
        parsed = pd.to_datetime(combined, format=f'{config.DATE_FORMAT} {time_format}', errors='coerce')
        offending = _first_unparsed(times, parsed)
        if offending is not None:
            raise ParseError(
                f"Unable to parse time value {offending!r} with format '{time_format}'. "
                f"Please specify time_format or ensure proper datetime format.",
                value=offending,
            )
        return parsed

    if ptypes.is_string_dtype(times) or ptypes.is_object_dtype(times):
        if time_format is not None:
            parsed = pd.to_datetime(times, format=time_format, errors='coerce')
        else:
            parsed = pd.to_datetime(times.astype('string'), errors='coerce', format='ISO8601')
        offending = _first_unparsed(times, parsed)
        if offending is not None:
            raise ParseError(f"Unable to parse timestamp value: {offending!r}", value=offending)
        return parsed

    raise ParseError(
        f"Unable to parse time column '{time_col}' of type {times.dtype}. "
        f"Please provide a date column or ensure the time column holds timestamps.",
        value=times.iloc[0],
    )

