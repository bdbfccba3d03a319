#!/usr/bin/env python3
"""
Site Diversity Analysis for Bird Detection Results

This script creates by-site summaries of detection data with diversity
metrics. Abundances are either taken from a precomputed column or, when no
abundance column is given, derived as vocal activity rates from the raw
detections. The abundances are then aggregated per site and species with a
configurable summary statistic and the following metrics are computed per site:

- richness: number of species with aggregated abundance > 0 (Hill number q=0)
- shannon: Shannon entropy -sum(p ln p)
- simpson: Gini-Simpson index 1 - sum(p^2)
- q1: exp(shannon) (Hill number q=1)
- q2: 1 / (1 - simpson), inverse Simpson (Hill number q=2)

Usage:
    ecoacoustics-site-diversity --input detections.csv --output results/diversity.csv
    ecoacoustics-site-diversity --input counts.csv --output results/diversity.csv --abundance-col count --stat mean
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from .. import config
from ..exceptions import ConfigurationError, DataError, missing_columns_error
from .utils.diversity_indices import diversity_table
from .vocal_activity_analysis import vocal_activity

logger = logging.getLogger(__name__)


class SiteDiversityAnalyzer:
    """
    Analyzer for per-site diversity metrics.

    Both abundance sources (a precomputed column or vocal activity rates
    derived from the detections) lead to the same matrix layout: sites and
    species in sorted order.
    """

    def __init__(self, abundance_col: Optional[str] = None,
                 species_col: str = config.SPECIES_COL,
                 site_col: str = config.SITE_COL,
                 abundance_sum_stat: str = config.DEFAULT_SUMMARY_STATISTIC,
                 **var_kwargs):
        """
        Initialize the site diversity analyzer.

        Args:
            abundance_col: Column with abundance data; None derives vocal activity rates
            species_col: Column with species identifiers
            site_col: Column with site identifiers
            abundance_sum_stat: One of config.SUMMARY_STATISTICS
            **var_kwargs: Passed to vocal_activity when abundance_col is None
                (time_col, date_col, interval_unit, time_format, ...)
        """
        if abundance_sum_stat not in config.SUMMARY_STATISTICS:
            raise ConfigurationError(
                f"Invalid summary statistic '{abundance_sum_stat}'. "
                f"Choose from: {', '.join(config.SUMMARY_STATISTICS)}",
                items=[abundance_sum_stat],
            )
        if abundance_col is not None and var_kwargs:
            logger.warning("Ignoring vocal activity parameters (%s) because abundance column '%s' is given",
                           ', '.join(sorted(var_kwargs)), abundance_col)

        self.abundance_col = abundance_col
        self.species_col = species_col
        self.site_col = site_col
        self.abundance_sum_stat = abundance_sum_stat
        self.var_kwargs = var_kwargs

        logger.info("Initialized site diversity analyzer")
        logger.info("Abundance source: %s", abundance_col or 'vocal activity rate')
        logger.info("Summary statistic: %s", abundance_sum_stat)

    def abundance_table(self, df: pd.DataFrame):
        """
        Get the table and column holding the abundances to summarize.

        Returns:
            Tuple of (table, abundance column name)
        """
        required = [self.species_col, self.site_col]
        if self.abundance_col is not None:
            required.append(self.abundance_col)
        missing = [col for col in required if col not in df.columns]
        if missing:
            raise missing_columns_error(missing)

        if self.abundance_col is not None:
            null_keys = [col for col in (self.species_col, self.site_col) if df[col].isna().any()]
            if null_keys:
                raise DataError(f"Missing values in grouping columns: {', '.join(null_keys)}")
            return df, self.abundance_col

        rates = vocal_activity(df, species_col=self.species_col, site_col=self.site_col, **self.var_kwargs)
        return rates, config.VAR_COL

    def community_matrix(self, df: pd.DataFrame, abundance_col: str) -> pd.DataFrame:
        """
        Aggregate abundances per site and species into a dense matrix.

        Args:
            df: Table with site, species and abundance columns
            abundance_col: Abundance column name

        Returns:
            DataFrame with sorted sites as index and sorted species as columns
        """
        summary = df.groupby([self.site_col, self.species_col])[abundance_col].agg(self.abundance_sum_stat)
        matrix = summary.unstack(self.species_col, fill_value=0.0)
        matrix = matrix.sort_index(axis=0).sort_index(axis=1)
        return matrix.fillna(0.0).astype(float)

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Calculate diversity metrics per site.

        Args:
            df: Detection table or precomputed abundance table

        Returns:
            DataFrame with columns site, <abundance column>, richness, shannon, simpson, q1, q2
        """
        if not isinstance(df, pd.DataFrame):
            raise TypeError("df must be a pandas DataFrame")
        if df.empty:
            raise DataError("Input data frame is empty")

        data, abundance_col = self.abundance_table(df)
        if not pd.api.types.is_numeric_dtype(data[abundance_col]):
            raise TypeError(f"Abundance column '{abundance_col}' must be numeric")

        matrix = self.community_matrix(data, abundance_col)
        site_summary = data.groupby(self.site_col)[abundance_col].agg(self.abundance_sum_stat)

        metrics = diversity_table(matrix)
        result = pd.DataFrame({
            'site': matrix.index,
            abundance_col: site_summary.reindex(matrix.index).to_numpy(),
        })
        for column in metrics.columns:
            result[column] = metrics[column].to_numpy()
        return result

    def print_summary(self, result: pd.DataFrame):
        """Log the per-site diversity table."""
        logger.info("=" * 80)
        logger.info("SITE DIVERSITY SUMMARY")
        logger.info("=" * 80)
        logger.info(f"{'Site':<20} {'Richness':<10} {'Shannon':<10} {'Simpson':<10} {'q1':<10} {'q2':<10}")
        logger.info("-" * 80)
        for _, row in result.iterrows():
            logger.info(f"{str(row['site']):<20} {int(row['richness']):<10d} {row['shannon']:<10.3f} "
                        f"{row['simpson']:<10.3f} {row['q1']:<10.3f} {row['q2']:<10.3f}")

    def save_results(self, result: pd.DataFrame, output_path: str):
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        result.to_csv(output_file, index=False)
        logger.info("Site diversity saved to: %s", output_file)


def site_diversity(df: pd.DataFrame,
                   abundance_col: Optional[str] = None,
                   species_col: str = config.SPECIES_COL,
                   site_col: str = config.SITE_COL,
                   abundance_sum_stat: str = config.DEFAULT_SUMMARY_STATISTIC,
                   **var_kwargs) -> pd.DataFrame:
    """
    Create a by-site summary with diversity metrics.

    Args:
        df: Detection table or precomputed abundance table
        abundance_col: Column with abundance data; None calculates vocal activity rates internally
        species_col: Column with species identifiers
        site_col: Column with site identifiers
        abundance_sum_stat: "sum" (default), "mean", "median", "max" or "min"
        **var_kwargs: Passed to vocal_activity when abundance_col is None

    Returns:
        One row per site with site, abundance summary, richness, shannon, simpson, q1 and q2
    """
    analyzer = SiteDiversityAnalyzer(abundance_col=abundance_col, species_col=species_col, site_col=site_col,
                                     abundance_sum_stat=abundance_sum_stat, **var_kwargs)
    return analyzer.compute(df)


def main(argv=None):
    """Main function to run site diversity analysis."""
    parser = argparse.ArgumentParser(
        description='Calculate per-site diversity metrics from bird detection results',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument('--input', type=str, required=True, help='Path to detections or abundance CSV file')
    parser.add_argument('--output', type=str, required=True, help='Path of the output CSV file')
    parser.add_argument('--abundance-col', type=str, default=None,
                        help='Abundance column; omit to derive vocal activity rates from detections')
    parser.add_argument('--species-col', type=str, default=config.SPECIES_COL, help='Species column')
    parser.add_argument('--site-col', type=str, default=config.SITE_COL, help='Site column')
    parser.add_argument('--stat', type=str, default=config.DEFAULT_SUMMARY_STATISTIC,
                        choices=config.SUMMARY_STATISTICS, help='Summary statistic (default: sum)')
    parser.add_argument('--time-col', type=str, default=config.TIME_COL,
                        help='Detection time column (derived abundances only)')
    parser.add_argument('--date-col', type=str, default=config.DATE_COL,
                        help='Detection date column (derived abundances only)')
    parser.add_argument('--interval-unit', type=str, default=config.DEFAULT_INTERVAL_UNIT,
                        help='Detection interval (derived abundances only)')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(message)s')

    print("=" * 80)
    print("SITE DIVERSITY ANALYSIS")
    print("=" * 80)
    print(f"Input: {args.input}")
    print(f"Abundance: {args.abundance_col or 'vocal activity rate'}")
    print(f"Summary statistic: {args.stat}")
    print(f"Output: {args.output}")
    print("=" * 80)

    var_kwargs = {}
    if args.abundance_col is None:
        var_kwargs = {'time_col': args.time_col, 'date_col': args.date_col, 'interval_unit': args.interval_unit}

    try:
        analyzer = SiteDiversityAnalyzer(abundance_col=args.abundance_col, species_col=args.species_col,
                                         site_col=args.site_col, abundance_sum_stat=args.stat, **var_kwargs)
        result = analyzer.compute(pd.read_csv(args.input))
        analyzer.print_summary(result)
        analyzer.save_results(result, args.output)
        return 0
    except Exception as e:
        print(f"\nError during analysis: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
