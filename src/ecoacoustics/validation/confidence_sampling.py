#!/usr/bin/env python3
"""
Confidence-Stratified Sampling of Bird Detections for Manual Validation

This script samples a number of detections per species evenly across the
confidence range, so that manual validation (and the threshold calibration fed
by it) sees low, medium and high confidence detections alike.

Sampling strategy:
- The confidence range of the whole (filtered) dataset is split once into
  n_bins equal-width bins [a, b); the same bins are used for every species
- Each species draws floor(n_samples / n_bins) detections from every populated bin
- With resample=True the shortfall of under-populated bins is redistributed
  over the bins that still hold unused detections, never reusing a row
- A species with fewer detections than n_samples returns all of them

Usage:
    ecoacoustics-sample-by-confidence --input detections.csv --output validation/sample.csv
    ecoacoustics-sample-by-confidence --input detections.csv --output validation/sample.csv --n-samples 50 --n-bins 5
    ecoacoustics-sample-by-confidence --input detections.csv --output validation/sample.csv --species "Turdus migratorius" --no-resample
"""

import sys
import argparse
import logging
import math
import warnings
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
from tqdm import tqdm

from .. import config
from ..config import ColumnMap
from ..exceptions import ConfigurationError, DataError, ParseError, SamplingShortfallWarning, missing_columns_error

logger = logging.getLogger(__name__)

# upper edge buffer so the maximum score falls inside the last half-open bin
BIN_EDGE_BUFFER = 1e-4
MIN_EDGE_MARGIN = 1e-10


def find_confidence_column(df: pd.DataFrame) -> str:
    """
    Find the single column whose name contains 'confidence' (case-insensitive).

    Args:
        df: Detection table

    Returns:
        Name of the confidence column
    """
    matches = [col for col in df.columns if 'confidence' in str(col).lower()]
    if not matches:
        raise ConfigurationError("No column containing 'confidence' found (case-insensitive)")
    if len(matches) > 1:
        raise ConfigurationError(
            f"Multiple columns containing 'confidence' found: {', '.join(map(str, matches))}", items=matches
        )
    return matches[0]


def confidence_bin_edges(scores: pd.Series, n_bins: int) -> np.ndarray:
    """
    Compute n_bins equal-width bin edges over the range of the scores.

    The upper edge is pushed slightly past the maximum so every score falls
    into a right-open bin.

    Args:
        scores: Confidence scores
        n_bins: Number of bins

    Returns:
        Array of n_bins + 1 increasing edges
    """
    low = float(scores.min())
    high = float(scores.max())
    width = (high - low) / n_bins

    if width == 0:
        return np.linspace(low, low + MIN_EDGE_MARGIN, n_bins + 1)

    edges = np.linspace(low, high + width * BIN_EDGE_BUFFER, n_bins + 1)
    edges[-1] = max(edges[-1], high + MIN_EDGE_MARGIN)
    return edges


class ConfidenceSampler:
    """
    Stratified sampler of detections across confidence bins.

    Bins are computed once on the pooled data and reused for every species so
    that bin semantics are comparable across species.
    """

    def __init__(self, n_samples: int = config.DEFAULT_N_SAMPLES, n_bins: int = config.DEFAULT_N_BINS,
                 resample: bool = True, min_conf: float = config.DEFAULT_MIN_CONF,
                 max_conf: float = config.DEFAULT_MAX_CONF, seed: Optional[int] = None,
                 species_col: str = config.SPECIES_COL, conf_col: Optional[str] = None,
                 verbose: bool = False):
        """
        Initialize the confidence sampler.

        Args:
            n_samples: Target number of samples per species
            n_bins: Number of equal-width confidence bins
            resample: If True, fill under-populated bins from other bins to reach n_samples
            min_conf: Minimum confidence to include
            max_conf: Maximum confidence to include
            seed: Random seed; identical seed and input give an identical sample
            species_col: Column with species identifiers
            conf_col: Confidence column; None auto-detects a column containing 'confidence'
            verbose: If True, show progress over species
        """
        invalid = []
        if isinstance(n_samples, bool) or not isinstance(n_samples, (int, np.integer)) or n_samples <= 0:
            invalid.append("n_samples must be a positive integer")
        if isinstance(n_bins, bool) or not isinstance(n_bins, (int, np.integer)) or n_bins <= 0:
            invalid.append("n_bins must be a positive integer")
        if not isinstance(resample, bool):
            invalid.append("resample must be True or False")
        if not isinstance(min_conf, (int, float)) or not isinstance(max_conf, (int, float)):
            invalid.append("min_conf and max_conf must be numeric")
        elif min_conf >= max_conf:
            invalid.append("min_conf must be less than max_conf")
        if invalid:
            raise ConfigurationError("Invalid parameters: " + '; '.join(invalid), items=invalid)

        self.n_samples = int(n_samples)
        self.n_bins = int(n_bins)
        self.resample = resample
        self.min_conf = min_conf
        self.max_conf = max_conf
        self.seed = seed
        self.species_col = species_col
        self.conf_col = conf_col
        self.verbose = verbose

        logger.info("Initialized confidence sampler: %d samples per species over %d bins", n_samples, n_bins)
        logger.info("Resample from other bins: %s", resample)
        logger.info("Confidence range: [%s, %s]", min_conf, max_conf)

    @classmethod
    def for_dialect(cls, dialect: str, **kwargs) -> 'ConfidenceSampler':
        """Create a sampler bound to the species and confidence columns of an export dialect."""
        columns = ColumnMap.for_dialect(dialect)
        kwargs.setdefault('species_col', columns.species)
        kwargs.setdefault('conf_col', columns.confidence)
        return cls(**kwargs)

    def prepare(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Filter detections to the confidence range and tag their confidence bin.

        Args:
            df: Pooled detection table

        Returns:
            Filtered copy with the config.CONF_BIN_COL column
        """
        if not isinstance(df, pd.DataFrame):
            raise TypeError("df must be a pandas DataFrame")

        if self.conf_col is None:
            conf_col = find_confidence_column(df)
            missing = [self.species_col] if self.species_col not in df.columns else []
        else:
            conf_col = self.conf_col
            missing = [col for col in (self.species_col, conf_col) if col not in df.columns]
        if missing:
            raise missing_columns_error(missing)

        scores = pd.to_numeric(df[conf_col], errors='coerce')
        unparsable = scores.isna() & df[conf_col].notna()
        if unparsable.any():
            value = df.loc[unparsable, conf_col].iloc[0]
            raise ParseError(f"Unable to parse confidence score: {value!r}", value=value)

        in_range = scores.notna() & (scores >= self.min_conf) & (scores <= self.max_conf)
        data = df[in_range].copy()
        scores = scores[in_range]
        logger.info("Kept %d of %d detections within confidence range", len(data), len(df))

        if data.empty:
            raise DataError(f"No detections found within confidence range [{self.min_conf}, {self.max_conf}]")

        edges = confidence_bin_edges(scores, self.n_bins)
        data[config.CONF_BIN_COL] = pd.cut(scores, bins=edges, right=False, include_lowest=True)
        return data

    def sample_species(self, species_df: pd.DataFrame, rng: np.random.Generator,
                       species: Optional[str] = None) -> pd.DataFrame:
        """
        Draw the stratified sample of one species.

        Args:
            species_df: Detections of one species, tagged with their bin
            rng: Random generator shared by all species of one call
            species: Species name used in messages

        Returns:
            Sampled rows
        """
        if self.n_samples > len(species_df):
            warnings.warn(
                f"Requested {self.n_samples} samples but only {len(species_df)} observations available "
                f"for {species}. Returning all available data.",
                SamplingShortfallWarning, stacklevel=3
            )
            return species_df

        codes = species_df[config.CONF_BIN_COL].cat.codes.to_numpy()
        positions = np.arange(len(species_df))
        populated = np.unique(codes)
        samples_per_bin = self.n_samples // self.n_bins

        selected = []
        for code in populated:
            members = positions[codes == code]
            n_take = min(samples_per_bin, len(members))
            if n_take > 0:
                selected.extend(rng.choice(members, size=n_take, replace=False).tolist())

        if self.resample and len(selected) < self.n_samples:
            used = np.zeros(len(species_df), dtype=bool)
            used[np.asarray(selected, dtype=int)] = True
            remaining = self.n_samples - len(selected)

            while remaining > 0:
                unused_bins = [positions[(codes == code) & ~used] for code in populated]
                unused_bins = [members for members in unused_bins if len(members) > 0]
                if not unused_bins:
                    break

                extra_per_bin = math.ceil(remaining / len(unused_bins))
                for members in unused_bins:
                    n_take = min(extra_per_bin, len(members), remaining)
                    if n_take == 0:
                        break
                    picks = rng.choice(members, size=n_take, replace=False)
                    used[picks] = True
                    selected.extend(picks.tolist())
                    remaining -= n_take

        if len(selected) < self.n_samples:
            logger.info("Requested %d samples but only %d could be obtained for %s with current stratification",
                        self.n_samples, len(selected), species)

        return species_df.iloc[selected]

    def sample(self, df: pd.DataFrame, species: Optional[List[str]] = None) -> pd.DataFrame:
        """
        Sample detections of every requested species across the confidence range.

        Args:
            df: Pooled detection table
            species: Species to sample; None samples every species in the data

        Returns:
            Concatenated sample of all species, tagged with config.CONF_BIN_COL
        """
        data = self.prepare(df)
        available = list(pd.unique(data[self.species_col].dropna()))

        if species is None:
            names = available
        else:
            names = [species] if isinstance(species, str) else list(species)
            unknown = [name for name in names if name not in available]
            if unknown:
                raise ConfigurationError(
                    f"The following species are not found in the data: {', '.join(map(str, unknown))}",
                    items=unknown,
                )

        rng = np.random.default_rng(self.seed)

        sampled = []
        for name in tqdm(names, desc="Sampling species", disable=not self.verbose):
            species_df = data[data[self.species_col] == name]
            if species_df.empty:
                continue
            species_sample = self.sample_species(species_df, rng, species=name)
            if not species_sample.empty:
                sampled.append(species_sample)

        if not sampled:
            raise DataError("No samples were selected from any species. Check your sampling parameters.")

        return pd.concat(sampled).reset_index(drop=True)

    def print_summary(self, sample: pd.DataFrame):
        """Log the number of sampled detections per species and bin."""
        counts = sample.groupby([self.species_col, config.CONF_BIN_COL], observed=True).size()
        logger.info("=" * 80)
        logger.info("CONFIDENCE SAMPLING SUMMARY")
        logger.info("=" * 80)
        logger.info("Sampled detections: %d", len(sample))
        for (name, conf_bin), count in counts.items():
            logger.info(f"{str(name):<35} {str(conf_bin):<25} {count}")

    def save_results(self, sample: pd.DataFrame, output_path: str):
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        sample.to_csv(output_file, index=False)
        logger.info("Sampled detections saved to: %s", output_file)


def sample_by_confidence(df: pd.DataFrame,
                         n_samples: int = config.DEFAULT_N_SAMPLES,
                         n_bins: int = config.DEFAULT_N_BINS,
                         resample: bool = True,
                         species: Optional[List[str]] = None,
                         species_col: str = config.SPECIES_COL,
                         conf_col: Optional[str] = None,
                         seed: Optional[int] = None,
                         min_conf: float = config.DEFAULT_MIN_CONF,
                         max_conf: float = config.DEFAULT_MAX_CONF,
                         verbose: bool = False) -> pd.DataFrame:
    """
    Sample detections evenly across the confidence range for validation.

    Args:
        df: Pooled detection table
        n_samples: Target number of samples per species (default: 100)
        n_bins: Number of confidence bins (default: 10)
        resample: If True, resample from other bins to reach n_samples when bins are uneven
        species: Species of interest; None processes all species
        species_col: Column with species identifiers
        conf_col: Confidence column; None auto-detects
        seed: Random seed for reproducible sampling
        min_conf: Minimum confidence to include (default: 0.1)
        max_conf: Maximum confidence to include (default: 1.0)
        verbose: If True, show progress

    Returns:
        Sampled detections of all species with a 'conf_bin' column
    """
    sampler = ConfidenceSampler(n_samples=n_samples, n_bins=n_bins, resample=resample, min_conf=min_conf,
                                max_conf=max_conf, seed=seed, species_col=species_col, conf_col=conf_col,
                                verbose=verbose)
    return sampler.sample(df, species=species)


def main(argv=None):
    """Main function to sample detections for validation."""
    parser = argparse.ArgumentParser(
        description='Sample detections evenly across confidence bins for manual validation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument('--input', type=str, required=True, help='Path to detections CSV file')
    parser.add_argument('--output', type=str, required=True, help='Path of the output sample CSV file')
    parser.add_argument('--n-samples', type=int, default=config.DEFAULT_N_SAMPLES,
                        help='Samples per species (default: 100)')
    parser.add_argument('--n-bins', type=int, default=config.DEFAULT_N_BINS, help='Confidence bins (default: 10)')
    parser.add_argument('--no-resample', action='store_true', help='Do not fill short bins from other bins')
    parser.add_argument('--species', type=str, nargs='+', default=None, help='Species to sample (default: all)')
    parser.add_argument('--dialect', type=str, default=None, choices=sorted(config.EXPORT_DIALECTS),
                        help='Detection export dialect providing the species and confidence columns')
    parser.add_argument('--species-col', type=str, default=None, help='Species column')
    parser.add_argument('--conf-col', type=str, default=None, help='Confidence column (default: auto-detect)')
    parser.add_argument('--min-conf', type=float, default=config.DEFAULT_MIN_CONF, help='Minimum confidence')
    parser.add_argument('--max-conf', type=float, default=config.DEFAULT_MAX_CONF, help='Maximum confidence')
    parser.add_argument('--seed', type=int, default=None, help='Random seed')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(message)s')

    print("=" * 80)
    print("CONFIDENCE SAMPLING")
    print("=" * 80)
    print(f"Input: {args.input}")
    print(f"Samples per species: {args.n_samples}")
    print(f"Bins: {args.n_bins}")
    print(f"Resample: {not args.no_resample}")
    print(f"Output: {args.output}")
    print("=" * 80)

    try:
        kwargs = dict(n_samples=args.n_samples, n_bins=args.n_bins, resample=not args.no_resample,
                      min_conf=args.min_conf, max_conf=args.max_conf, seed=args.seed, verbose=True)
        if args.species_col:
            kwargs['species_col'] = args.species_col
        if args.conf_col:
            kwargs['conf_col'] = args.conf_col

        if args.dialect:
            sampler = ConfidenceSampler.for_dialect(args.dialect, **kwargs)
        else:
            sampler = ConfidenceSampler(**kwargs)

        sample = sampler.sample(pd.read_csv(args.input), species=args.species)
        sampler.print_summary(sample)
        sampler.save_results(sample, args.output)
        return 0
    except Exception as e:
        print(f"\nError during sampling: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
