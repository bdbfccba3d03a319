#!/usr/bin/env python3
"""
Vocal Activity Rate Analysis for Bird Detection Results

This script converts raw species detections into vocal activity rates (VAR):
the number of vocal events per recording day, per species and optionally per
site. Because an overlapping classifier window may report the same call more
than once, detections of the same species (and site) falling into the same
detection interval can be collapsed into one vocal event first.

Three reduction methods are available:
- interval_deduplication: one event per detection interval, divided by the days recorded
- total_detections: every raw detection, divided by the days recorded
- detections_per_day: mean of the per-calendar-day detection counts

Usage:
    ecoacoustics-vocal-activity --input detections.csv --output results/var.csv
    ecoacoustics-vocal-activity --input detections.csv --output results/var.csv --interval-unit "15 minutes"
    ecoacoustics-vocal-activity --input detections.csv --output results/var.csv --method detections_per_day --no-site
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .. import config
from ..config import ColumnMap
from ..exceptions import ConfigurationError, DataError, ParseError, missing_columns_error
from .utils.time_intervals import floor_to_interval, parse_interval_unit, resolve_detection_times

logger = logging.getLogger(__name__)

DETECTION_COUNT_COL = 'detection_count'
DAYS_RECORDED_COL = 'days_recorded'


class VocalActivityAnalyzer:
    """
    Calculator for vocal activity rates from a detection table.

    The analyzer holds the method, the interval granularity and the column
    binding; `compute` is a pure function of the table passed in.
    """

    def __init__(self, method: str = config.DEFAULT_VAR_METHOD,
                 interval_unit: str = config.DEFAULT_INTERVAL_UNIT,
                 time_format: Optional[str] = None,
                 columns: Optional[ColumnMap] = None):
        """
        Initialize the vocal activity analyzer.

        Args:
            method: One of config.VAR_METHODS
            interval_unit: Detection interval, e.g. "minute", "15 minutes", "hour", "day"
            time_format: strptime format of the time column; None auto-detects HH:MM:SS or HHMMSS
            columns: Column binding; site=None computes species-level rates only
        """
        if method not in config.VAR_METHODS:
            raise ConfigurationError(
                f"Invalid method '{method}'. Choose from: {', '.join(config.VAR_METHODS)}",
                items=[method],
            )
        # fail before touching any data
        parse_interval_unit(interval_unit)

        self.method = method
        self.interval_unit = interval_unit
        self.time_format = time_format
        self.columns = columns or ColumnMap()

        logger.info("Initialized vocal activity analyzer with method: %s", method)
        logger.info("Detection interval: %s", interval_unit)
        logger.info("Grouping by: %s", ', '.join(self.group_columns))

    @property
    def group_columns(self) -> List[str]:
        if self.columns.site is None:
            return [self.columns.species]
        return [self.columns.site, self.columns.species]

    def prepare_detections(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Validate the table and add detection time, interval and date columns.

        Args:
            df: Detection table

        Returns:
            Copy of the table with 'detection_time', 'detection_interval' and 'detection_date'
        """
        if not isinstance(df, pd.DataFrame):
            raise TypeError("df must be a pandas DataFrame")

        self.columns.require(df, ['species', 'time', 'site'])

        if df.empty:
            raise DataError("Input detection table is empty")

        null_keys = [col for col in self.group_columns if df[col].isna().any()]
        if null_keys:
            raise DataError(f"Missing values in grouping columns: {', '.join(null_keys)}")

        data = df.copy()
        data['detection_time'] = resolve_detection_times(
            data, self.columns.time, date_col=self.columns.date, time_format=self.time_format
        )
        data['detection_interval'] = floor_to_interval(data['detection_time'], self.interval_unit)
        data['detection_date'] = data['detection_time'].dt.normalize()
        return data

    def days_recorded(self, data: pd.DataFrame) -> pd.Series:
        """
        Get the recording length in days of every group.

        The first non-null value of the recording length column is used when
        that column exists; groups without any value fall back to the number
        of distinct detection dates.

        Args:
            data: Table returned by prepare_detections

        Returns:
            Series of days recorded indexed by the group columns
        """
        grouped = data.groupby(self.group_columns)
        unique_days = grouped['detection_date'].nunique()

        length_col = self.columns.recording_length
        if length_col is None or length_col not in data.columns:
            return unique_days.rename(DAYS_RECORDED_COL)

        lengths = pd.to_numeric(data[length_col], errors='coerce')
        unparsable = lengths.isna() & data[length_col].notna()
        if unparsable.any():
            value = data.loc[unparsable, length_col].iloc[0]
            raise ParseError(f"Unable to parse recording length value: {value!r}", value=value)

        supplied = lengths.groupby([data[col] for col in self.group_columns]).first()
        supplied = supplied.reindex(unique_days.index)
        fallback = supplied.isna()
        if fallback.any():
            logger.warning(
                "No '%s' value for %d group(s); using the number of distinct detection dates instead",
                length_col, int(fallback.sum())
            )
        return supplied.fillna(unique_days).rename(DAYS_RECORDED_COL)

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Calculate vocal activity rates.

        Args:
            df: Detection table

        Returns:
            DataFrame with the group columns, 'detection_count', 'days_recorded'
            and 'var', ordered by species then site
        """
        data = self.prepare_detections(df)
        group_cols = self.group_columns

        if self.method == 'detections_per_day':
            # the recording length column is ignored, the rate is a plain daily mean
            daily = data.groupby(group_cols + ['detection_date']).size()
            result = daily.groupby(level=group_cols).agg(
                **{DETECTION_COUNT_COL: 'sum', DAYS_RECORDED_COL: 'size', config.VAR_COL: 'mean'}
            )
        else:
            if self.method == 'interval_deduplication':
                events = data.drop_duplicates(subset=group_cols + ['detection_interval'])
            else:
                events = data

            counts = events.groupby(group_cols).size().rename(DETECTION_COUNT_COL)
            days = self.days_recorded(data)
            result = pd.concat([counts, days], axis=1)

            empty_groups = result[~(result[DAYS_RECORDED_COL] > 0)]
            if not empty_groups.empty:
                names = [str(key) for key in empty_groups.index]
                raise DataError(f"Days recorded must be positive; zero or negative for: {', '.join(names)}")

            result[config.VAR_COL] = result[DETECTION_COUNT_COL] / result[DAYS_RECORDED_COL]

        result = result.reset_index()
        result[DETECTION_COUNT_COL] = result[DETECTION_COUNT_COL].astype(int)

        sort_cols = [self.columns.species] + ([self.columns.site] if self.columns.site else [])
        result = result.sort_values(sort_cols, kind='mergesort').reset_index(drop=True)
        return result[group_cols + [DETECTION_COUNT_COL, DAYS_RECORDED_COL, config.VAR_COL]]

    def print_summary(self, result: pd.DataFrame):
        """Log a summary of vocal activity results."""
        logger.info("=" * 80)
        logger.info("VOCAL ACTIVITY SUMMARY")
        logger.info("=" * 80)
        logger.info("Groups: %d", len(result))
        logger.info("Species: %d", result[self.columns.species].nunique())
        if len(result):
            logger.info("Total detections counted: %d", int(result[DETECTION_COUNT_COL].sum()))
            logger.info("VAR range: %.3f - %.3f", result[config.VAR_COL].min(), result[config.VAR_COL].max())

    def save_results(self, result: pd.DataFrame, output_path: str):
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        result.to_csv(output_file, index=False)
        logger.info("Vocal activity rates saved to: %s", output_file)


def vocal_activity(df: pd.DataFrame,
                   method: str = config.DEFAULT_VAR_METHOD,
                   interval_unit: str = config.DEFAULT_INTERVAL_UNIT,
                   time_col: str = config.TIME_COL,
                   date_col: Optional[str] = config.DATE_COL,
                   species_col: str = config.SPECIES_COL,
                   site_col: Optional[str] = config.SITE_COL,
                   recording_length_col: Optional[str] = config.RECORDING_LENGTH_COL,
                   time_format: Optional[str] = None) -> pd.DataFrame:
    """
    Calculate vocal activity rates (VAR) from bird detection data.

    Args:
        df: Detection table
        method: "interval_deduplication" (default), "total_detections" or "detections_per_day"
        interval_unit: Detection interval used for deduplication
        time_col: Column with the detection time (or complete timestamp)
        date_col: Column with the detection date, if separate from time_col
        species_col: Column with species identifiers
        site_col: Column with site identifiers; None for species-level rates
        recording_length_col: Optional column with the recording length in days per group
        time_format: strptime format of time_col; None auto-detects

    Returns:
        DataFrame of vocal activity rates ordered by species then site
    """
    columns = ColumnMap(site=site_col, species=species_col, time=time_col, date=date_col,
                        recording_length=recording_length_col)
    analyzer = VocalActivityAnalyzer(method=method, interval_unit=interval_unit,
                                     time_format=time_format, columns=columns)
    return analyzer.compute(df)


def vocal_activity_rate(df: pd.DataFrame, interval_unit: str = config.DEFAULT_INTERVAL_UNIT,
                        **kwargs) -> pd.DataFrame:
    """Vocal activity rates with interval deduplication (see vocal_activity)."""
    return vocal_activity(df, method='interval_deduplication', interval_unit=interval_unit, **kwargs)


def species_frequency(df: pd.DataFrame, species_col: str = config.SPECIES_COL,
                      level_col: Optional[str] = None) -> pd.DataFrame:
    """
    Count raw detections per species, optionally per level (e.g. file or day).

    Args:
        df: Detection table
        species_col: Column with species identifiers
        level_col: Optional extra grouping column

    Returns:
        DataFrame with the grouping columns and 'count'
    """
    keys = [level_col, species_col] if level_col else [species_col]
    missing = [col for col in keys if col not in df.columns]
    if missing:
        raise missing_columns_error(missing)

    return df.groupby(keys).size().rename('count').reset_index()


def main(argv=None):
    """Main function to run vocal activity analysis."""
    parser = argparse.ArgumentParser(
        description='Calculate vocal activity rates from bird detection results',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Example:
    ecoacoustics-vocal-activity --input detections.csv --output results/var.csv \\
        --interval-unit "15 minutes" --time-col time --date-col date
        """
    )

    parser.add_argument('--input', type=str, required=True, help='Path to detections CSV file')
    parser.add_argument('--output', type=str, required=True, help='Path of the output CSV file')
    parser.add_argument('--method', type=str, default=config.DEFAULT_VAR_METHOD,
                        choices=config.VAR_METHODS, help='VAR calculation method (default: interval_deduplication)')
    parser.add_argument('--interval-unit', type=str, default=config.DEFAULT_INTERVAL_UNIT,
                        help='Detection interval, e.g. "minute", "15 minutes", "hour" (default: minute)')
    parser.add_argument('--time-col', type=str, default=config.TIME_COL, help='Detection time column')
    parser.add_argument('--date-col', type=str, default=config.DATE_COL, help='Detection date column')
    parser.add_argument('--species-col', type=str, default=config.SPECIES_COL, help='Species column')
    parser.add_argument('--site-col', type=str, default=config.SITE_COL, help='Site column')
    parser.add_argument('--no-site', action='store_true', help='Calculate species-level rates only')
    parser.add_argument('--recording-length-col', type=str, default=config.RECORDING_LENGTH_COL,
                        help='Column with recording days per group (used when present)')
    parser.add_argument('--time-format', type=str, default=None,
                        help='Time format, e.g. "%%H%%M%%S" (default: auto-detect)')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(message)s')

    print("=" * 80)
    print("VOCAL ACTIVITY ANALYSIS")
    print("=" * 80)
    print(f"Input: {args.input}")
    print(f"Method: {args.method}")
    print(f"Interval: {args.interval_unit}")
    print(f"Output: {args.output}")
    print("=" * 80)

    try:
        columns = ColumnMap(
            site=None if args.no_site else args.site_col,
            species=args.species_col,
            time=args.time_col,
            date=args.date_col,
            recording_length=args.recording_length_col,
        )
        analyzer = VocalActivityAnalyzer(method=args.method, interval_unit=args.interval_unit,
                                         time_format=args.time_format, columns=columns)
        df = pd.read_csv(args.input)
        result = analyzer.compute(df)
        analyzer.print_summary(result)
        analyzer.save_results(result, args.output)

        print("\n" + "=" * 80)
        print("ANALYSIS COMPLETE")
        print("=" * 80)
        return 0
    except Exception as e:
        print(f"\nError during analysis: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
