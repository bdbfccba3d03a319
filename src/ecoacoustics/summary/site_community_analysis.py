#!/usr/bin/env python3
"""
Site-Species Community Matrix for Bird Detection Summaries

This script pivots long-form site/species/abundance records into a dense
community matrix with sites as rows and species as columns, suitable for
ordination analyses such as NMDS. Duplicate site-species records are summed
(abundance mode) or combined by maximum presence (presence-absence mode), and
every combination that was never observed is exactly 0.

Usage:
    ecoacoustics-site-community --input var.csv --output results/community.csv
    ecoacoustics-site-community --input counts.csv --output results/community.csv --abundance-col count --presence-absence
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from pandas.api import types as ptypes

from .. import config
from ..config import ColumnMap
from ..exceptions import ConfigurationError, DataError

logger = logging.getLogger(__name__)


def _index_lookup(values: pd.Series) -> Dict:
    try:
        keys = sorted(values.unique())
    except TypeError as e:
        raise DataError(f"Values in column '{values.name}' cannot be ordered (mixed types)") from e
    return {key: idx for idx, key in enumerate(keys)}


class CommunityMatrixBuilder:
    """
    Builder for site x species community matrices.

    The matrix is sized in a first pass over the sorted unique sites and
    species and filled in a second pass by index lookup.
    """

    def __init__(self, presence_absence: bool = False, columns: Optional[ColumnMap] = None):
        """
        Initialize the community matrix builder.

        Args:
            presence_absence: If True, cells are 1 when any record has abundance > 0, else 0
            columns: Column binding; the abundance role defaults to the 'var' column
        """
        self.presence_absence = presence_absence
        columns = columns or ColumnMap()
        if columns.abundance is None:
            columns = ColumnMap(**{**columns.roles(), 'abundance': config.VAR_COL})
        self.columns = columns

        logger.info("Initialized community matrix builder (%s)",
                    'presence-absence' if presence_absence else 'abundance')

    def build(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Build the community matrix.

        Args:
            df: Table with site, species and abundance columns

        Returns:
            DataFrame with sorted sites as index and sorted species as columns
        """
        if not isinstance(df, pd.DataFrame):
            raise TypeError("df must be a pandas DataFrame")

        site_col = self.columns.site
        species_col = self.columns.species
        abundance_col = self.columns.abundance

        if df.empty:
            raise DataError("Input data frame is empty")

        self.columns.require(df, ['site', 'species', 'abundance'])
        if site_col is None:
            raise ConfigurationError("A site column is required to build a community matrix")

        if not ptypes.is_numeric_dtype(df[abundance_col]):
            raise TypeError(f"Abundance column '{abundance_col}' must be numeric")

        incomplete = [col for col in (site_col, species_col, abundance_col) if df[col].isna().any()]
        if incomplete:
            raise DataError(f"Missing values in columns: {', '.join(incomplete)}")

        # pass 1: fix row and column order
        site_index = _index_lookup(df[site_col])
        species_index = _index_lookup(df[species_col])

        rows = df[site_col].map(site_index).to_numpy()
        cols = df[species_col].map(species_index).to_numpy()
        values = df[abundance_col].to_numpy(dtype=float)

        # pass 2: accumulate every record into its cell
        matrix = np.zeros((len(site_index), len(species_index)))
        if self.presence_absence:
            np.maximum.at(matrix, (rows, cols), (values > 0).astype(float))
        else:
            np.add.at(matrix, (rows, cols), values)

        return pd.DataFrame(
            matrix,
            index=pd.Index(list(site_index), name=site_col),
            columns=pd.Index(list(species_index), name=species_col),
        )

    def print_summary(self, matrix: pd.DataFrame):
        """Log the shape and fill of a community matrix."""
        occupied = int((matrix.to_numpy() > 0).sum())
        logger.info("=" * 80)
        logger.info("COMMUNITY MATRIX SUMMARY")
        logger.info("=" * 80)
        logger.info("Sites: %d", matrix.shape[0])
        logger.info("Species: %d", matrix.shape[1])
        logger.info("Occupied cells: %d of %d", occupied, matrix.size)

    def save_results(self, matrix: pd.DataFrame, output_path: str):
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        matrix.to_csv(output_file)
        logger.info("Community matrix saved to: %s", output_file)


def site_community(df: pd.DataFrame,
                   site_col: str = config.SITE_COL,
                   species_col: str = config.SPECIES_COL,
                   abundance_col: str = config.VAR_COL,
                   presence_absence: bool = False) -> pd.DataFrame:
    """
    Create a site-species community matrix.

    Args:
        df: Table with site, species and abundance columns
        site_col: Column with site identifiers
        species_col: Column with species identifiers
        abundance_col: Numeric column with abundance or count data
        presence_absence: If True, return 0/1 presence-absence data

    Returns:
        DataFrame with sorted sites as rows and sorted species as columns
    """
    columns = ColumnMap(site=site_col, species=species_col, abundance=abundance_col)
    return CommunityMatrixBuilder(presence_absence=presence_absence, columns=columns).build(df)


def main(argv: Optional[List[str]] = None):
    """Main function to build a community matrix."""
    parser = argparse.ArgumentParser(
        description='Create a site x species community matrix from detection summaries',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument('--input', type=str, required=True, help='Path to the site/species/abundance CSV file')
    parser.add_argument('--output', type=str, required=True, help='Path of the output matrix CSV file')
    parser.add_argument('--site-col', type=str, default=config.SITE_COL, help='Site column')
    parser.add_argument('--species-col', type=str, default=config.SPECIES_COL, help='Species column')
    parser.add_argument('--abundance-col', type=str, default=config.VAR_COL, help='Abundance column (default: var)')
    parser.add_argument('--presence-absence', action='store_true', help='Return presence-absence data')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(message)s')

    print("=" * 80)
    print("SITE COMMUNITY MATRIX")
    print("=" * 80)
    print(f"Input: {args.input}")
    print(f"Mode: {'presence-absence' if args.presence_absence else 'abundance'}")
    print(f"Output: {args.output}")
    print("=" * 80)

    try:
        columns = ColumnMap(site=args.site_col, species=args.species_col, abundance=args.abundance_col)
        builder = CommunityMatrixBuilder(presence_absence=args.presence_absence, columns=columns)
        matrix = builder.build(pd.read_csv(args.input))
        builder.print_summary(matrix)
        builder.save_results(matrix, args.output)
        return 0
    except Exception as e:
        print(f"\nError building community matrix: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
