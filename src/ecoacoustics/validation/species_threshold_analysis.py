#!/usr/bin/env python3
"""
Species Confidence Threshold Analysis for Validated Bird Detections

This script calibrates classifier confidence scores against manual validation.
For each species a logistic regression of the binary validation label on the
confidence score is fitted, and the confidence threshold at which the predicted
probability of a correct detection reaches a target precision p is derived:

    x* = (logit(p) - b0) / b1

With the logit transform (backtransform=True) the model is fitted on
logit(confidence) / sensitivity, and the threshold is mapped back to the
confidence scale as logistic(x* * sensitivity). Full results also carry a
100 point prediction curve with a 95% confidence band obtained on the link
scale and transformed with the logistic function.

Usage:
    ecoacoustics-species-threshold --input validated.csv --output results/thresholds.csv
    ecoacoustics-species-threshold --input validated.csv --output results/thresholds.csv --p 0.9 --no-backtransform
    ecoacoustics-species-threshold --input validated.csv --output results/thresholds.csv --plot-dir results/plots
"""

import sys
import argparse
import logging
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
from pandas.api import types as ptypes
from scipy.special import expit, logit
from scipy.stats import norm
from tqdm import tqdm

from .. import config
from ..exceptions import (
    ConfigurationError,
    DataError,
    LowConfidenceWarning,
    ParseError,
    PartialFailureWarning,
    missing_columns_error,
)
from .utils.logistic_regression import LogisticFit, fit_logistic
from .utils.threshold_plot import plot_species_threshold

logger = logging.getLogger(__name__)

TRANSFORMED_COL = 'score_transformed'

_LABEL_VALUES = {
    'true': 1.0, 't': 1.0, 'yes': 1.0, 'y': 1.0, '1': 1.0, '1.0': 1.0,
    'false': 0.0, 'f': 0.0, 'no': 0.0, 'n': 0.0, '0': 0.0, '0.0': 0.0,
}


@dataclass
class SpeciesThresholdResult:
    """Complete threshold calibration of one species."""
    threshold: float
    logit_threshold: float
    model: LogisticFit
    predictions: pd.DataFrame
    observations: pd.DataFrame
    parameters: Dict
    n_obs: int
    low_confidence: bool
    species: Optional[str] = None
    converged: bool = True


@dataclass
class SpeciesThresholdBatch:
    """Threshold table plus the complete calibration of every fitted species."""
    thresholds: pd.DataFrame
    results: Dict[str, SpeciesThresholdResult] = field(default_factory=dict)


def coerce_validation_labels(labels: pd.Series) -> pd.Series:
    """
    Convert validation labels to 0/1 floats.

    Booleans, 0/1 numbers and the strings true/false, yes/no, 1/0 are
    accepted; missing labels stay missing.

    Args:
        labels: Series of validation labels

    Returns:
        Series of 0.0/1.0 (NaN where missing)
    """
    if ptypes.is_bool_dtype(labels):
        return labels.astype('float')

    if ptypes.is_numeric_dtype(labels):
        values = labels.astype(float)
        invalid = values.notna() & ~values.isin([0.0, 1.0])
        if invalid.any():
            value = labels[invalid].iloc[0]
            raise ParseError(f"Validation labels must be binary (0/1); got {value!r}", value=value)
        return values

    normalized = labels.astype('string').str.strip().str.lower()
    values = normalized.map(_LABEL_VALUES)
    invalid = values.isna() & labels.notna()
    if invalid.any():
        value = labels[invalid].iloc[0]
        raise ParseError(f"Unable to parse validation label: {value!r}", value=value)
    return values.astype(float)


class SpeciesThresholdAnalyzer:
    """
    Calibrator of confidence thresholds from validated detections.

    Each species is fitted independently; a batch over several species skips
    (with a warning) every species whose data cannot support a fit.
    """

    def __init__(self, valid_col: str = config.VALID_COL, conf_col: str = config.CONFIDENCE_COL,
                 p: float = config.DEFAULT_TARGET_PRECISION, backtransform: bool = True,
                 sensitivity: float = config.DEFAULT_SENSITIVITY, strict: bool = True,
                 plot_logit: bool = False):
        """
        Initialize the species threshold analyzer.

        Args:
            valid_col: Column with binary validation labels
            conf_col: Column with confidence scores
            p: Target probability of a correct detection at the threshold
            backtransform: If True, fit on logit(confidence) / sensitivity
            sensitivity: Rescaling of the logit before fitting
            strict: If True, confidence scores of exactly 0 or 1 are an error on the
                logit path; otherwise those rows are dropped with a warning
            plot_logit: If True, threshold plots use the logit scale (requires backtransform)
        """
        invalid = []
        if not 0 < p < 1:
            invalid.append(f"p must be between 0 and 1 (got {p})")
        if not sensitivity > 0:
            invalid.append(f"sensitivity must be positive (got {sensitivity})")
        if invalid:
            raise ConfigurationError("Invalid parameters: " + '; '.join(invalid), items=invalid)

        if plot_logit and not backtransform:
            warnings.warn("plot_logit=True requires backtransform=True. Setting plot_logit=False.",
                          UserWarning, stacklevel=2)
            plot_logit = False

        self.valid_col = valid_col
        self.conf_col = conf_col
        self.p = p
        self.backtransform = backtransform
        self.sensitivity = sensitivity
        self.strict = strict
        self.plot_logit = plot_logit

        logger.info("Initialized species threshold analyzer with target probability: %s", p)
        logger.info("Predictor: %s", f"logit(confidence) / {sensitivity}" if backtransform else 'confidence')

    @property
    def parameters(self) -> Dict:
        return {
            'p': self.p,
            'valid_col': self.valid_col,
            'conf_col': self.conf_col,
            'backtransform': self.backtransform,
            'sensitivity': self.sensitivity,
            'plot_logit': self.plot_logit,
        }

    def prepare_observations(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Validate, coerce and transform the training data of one species.

        Args:
            df: Table with validation labels and confidence scores

        Returns:
            DataFrame with the confidence column, the 0/1 validation column and,
            on the logit path, the transformed scores
        """
        if not isinstance(df, pd.DataFrame):
            raise TypeError("df must be a pandas DataFrame")

        missing = [col for col in (self.valid_col, self.conf_col) if col not in df.columns]
        if missing:
            raise missing_columns_error(missing)

        if df.empty:
            raise DataError("Data frame is empty")

        confidence = pd.to_numeric(df[self.conf_col], errors='coerce')
        unparsable = confidence.isna() & df[self.conf_col].notna()
        if unparsable.any():
            value = df.loc[unparsable, self.conf_col].iloc[0]
            raise ParseError(f"Unable to parse confidence score: {value!r}", value=value)

        observations = pd.DataFrame({
            self.conf_col: confidence.astype(float),
            self.valid_col: coerce_validation_labels(df[self.valid_col]),
        }).dropna()

        if observations.empty:
            raise DataError("No complete observations (label and confidence) in data frame")
        if observations[self.valid_col].nunique() < 2:
            raise DataError("No variation in validation data - all values are the same")

        if self.backtransform:
            scores = observations[self.conf_col]
            boundary = (scores <= 0) | (scores >= 1)
            if boundary.any():
                if self.strict:
                    raise DataError("Confidence scores must be between 0 and 1 (exclusive) for logit transformation")
                warnings.warn(
                    f"Dropping {int(boundary.sum())} observation(s) with confidence of 0 or 1 before logit transformation",
                    PartialFailureWarning, stacklevel=3
                )
                observations = observations[~boundary]

            observations = observations.assign(**{TRANSFORMED_COL: logit(observations[self.conf_col]) / self.sensitivity})
            observations = observations[np.isfinite(observations[TRANSFORMED_COL])]

            if observations.empty:
                raise DataError("No valid logit scores after transformation")
            if observations[self.valid_col].nunique() < 2:
                raise DataError("No variation in validation data after transformation - all values are the same")

        return observations.reset_index(drop=True)

    def prediction_curve(self, model: LogisticFit, grid_size: int = config.PREDICTION_GRID_SIZE) -> pd.DataFrame:
        """
        Predict the probability of a correct detection over the confidence range.

        Args:
            model: Fitted logistic regression
            grid_size: Number of grid points

        Returns:
            DataFrame with score_original, score_transformed (logit path only),
            pred_prob, lower_ci and upper_ci
        """
        if self.backtransform:
            score_original = np.linspace(*config.LOGIT_GRID_BOUNDS, grid_size)
            score_model = logit(score_original) / self.sensitivity
        else:
            score_original = np.linspace(0.0, 1.0, grid_size)
            score_model = score_original

        fit, se = model.predict_link(score_model)
        z_value = norm.ppf(1 - (1 - config.CONFIDENCE_LEVEL) / 2)

        curve = {'score_original': score_original}
        if self.backtransform:
            curve[TRANSFORMED_COL] = score_model
        curve['pred_prob'] = expit(fit)
        curve['lower_ci'] = expit(fit - z_value * se)
        curve['upper_ci'] = expit(fit + z_value * se)
        return pd.DataFrame(curve)

    def calibrate(self, df: pd.DataFrame, species: Optional[str] = None) -> SpeciesThresholdResult:
        """
        Fit the logistic model of one species and derive its threshold.

        Args:
            df: Validated detections of a single species
            species: Optional species name carried on the result

        Returns:
            SpeciesThresholdResult
        """
        observations = self.prepare_observations(df)
        n_obs = len(observations)

        label = f" for {species}" if species is not None else ''
        low_confidence = n_obs < config.MIN_RELIABLE_OBSERVATIONS
        if low_confidence:
            warnings.warn(f"Fewer than {config.MIN_RELIABLE_OBSERVATIONS} observations{label}. "
                          f"Results may be unreliable.", LowConfidenceWarning, stacklevel=3)

        predictor = TRANSFORMED_COL if self.backtransform else self.conf_col
        model = fit_logistic(observations[predictor], observations[self.valid_col])
        if not np.isfinite([model.intercept, model.slope]).all():
            raise DataError("Logistic regression coefficients are not finite")
        if model.slope == 0:
            raise DataError("Fitted slope is zero - confidence does not predict validity")
        if not model.converged:
            warnings.warn(f"Logistic regression did not converge{label}; fitted probabilities are "
                          f"numerically 0 or 1. Threshold may be unreliable.",
                          PartialFailureWarning, stacklevel=3)

        logit_threshold = (logit(self.p) - model.intercept) / model.slope
        if self.backtransform:
            threshold = float(expit(logit_threshold * self.sensitivity))
        else:
            threshold = float(logit_threshold)

        return SpeciesThresholdResult(
            threshold=threshold,
            logit_threshold=float(logit_threshold),
            model=model,
            predictions=self.prediction_curve(model),
            observations=observations,
            parameters=self.parameters,
            n_obs=n_obs,
            low_confidence=low_confidence,
            species=species,
            converged=model.converged,
        )

    def fit(self, df: pd.DataFrame, threshold_only: bool = False,
            species: Optional[str] = None) -> Union[float, SpeciesThresholdResult]:
        """
        Calculate the confidence threshold of a single species.

        Args:
            df: Validated detections of a single species
            threshold_only: If True, return only the threshold
            species: Optional species name carried on the result

        Returns:
            Threshold, or the complete SpeciesThresholdResult
        """
        result = self.calibrate(df, species=species)
        if threshold_only:
            return result.threshold
        return result

    def fit_species(self, df: pd.DataFrame, species_col: str = config.SPECIES_COL,
                    species: Optional[List[str]] = None, threshold_only: bool = False,
                    verbose: bool = False) -> Union[pd.DataFrame, SpeciesThresholdBatch]:
        """
        Calculate confidence thresholds for every species independently.

        Species whose data cannot support a fit are skipped with a
        PartialFailureWarning; if no species can be fitted a DataError is raised.
        In strict mode on the logit path, a confidence of exactly 0 or 1 for
        any requested species fails the whole call before fitting.

        Args:
            df: Validated detections of several species
            species_col: Column with species identifiers
            species: Species to fit; None fits all species in sorted order
            threshold_only: If True, return only the species/threshold table
            verbose: If True, show a progress bar

        Returns:
            Threshold table, or SpeciesThresholdBatch with the complete results
        """
        if not isinstance(df, pd.DataFrame):
            raise TypeError("df must be a pandas DataFrame")

        missing = [col for col in (species_col, self.valid_col, self.conf_col) if col not in df.columns]
        if missing:
            raise missing_columns_error(missing)
        if df.empty:
            raise DataError("Data frame is empty")

        available = sorted(df[species_col].dropna().unique())
        if species is None:
            names = [str(name) for name in available]
        else:
            names = [str(name) for name in species] if isinstance(species, (list, tuple)) else [str(species)]
            unknown = [name for name in names if name not in set(map(str, available))]
            if unknown:
                raise ConfigurationError(
                    f"The following species are not found in the data: {', '.join(unknown)}", items=unknown
                )

        species_keys = df[species_col].astype(str)
        if self.backtransform and self.strict:
            requested = df[species_keys.isin(names)]
            scores = pd.to_numeric(requested[self.conf_col], errors='coerce')
            boundary = (scores <= 0) | (scores >= 1)
            if boundary.any():
                affected = sorted(map(str, requested.loc[boundary, species_col].unique()))
                raise DataError(
                    "Confidence scores must be between 0 and 1 (exclusive) for logit transformation; "
                    f"found 0 or 1 for: {', '.join(affected)}"
                )

        results = {}
        for name in tqdm(names, desc="Fitting species thresholds", disable=not verbose):
            try:
                results[str(name)] = self.calibrate(df[species_keys == str(name)], species=str(name))
            except DataError as e:
                warnings.warn(f"Skipping species '{name}': {e}", PartialFailureWarning, stacklevel=2)

        if not results:
            raise DataError("No species threshold could be calculated")

        table = pd.DataFrame([
            {
                'species': name,
                'threshold': result.threshold,
                'logit_threshold': result.logit_threshold,
                'n_obs': result.n_obs,
                'low_confidence': result.low_confidence,
                'converged': result.converged,
            }
            for name, result in results.items()
        ])
        if threshold_only:
            return table[['species', 'threshold']]
        return SpeciesThresholdBatch(thresholds=table, results=results)

    def plot(self, result: SpeciesThresholdResult, output_path: Optional[str] = None):
        return plot_species_threshold(result, output_path=output_path, plot_logit=self.plot_logit)

    def print_summary(self, table: pd.DataFrame):
        """Log a threshold table."""
        logger.info("=" * 80)
        logger.info("SPECIES THRESHOLD SUMMARY (p = %s)", self.p)
        logger.info("=" * 80)
        logger.info(f"{'Species':<35} {'Threshold':<12} {'N':<6} {'Reliable':<8}")
        logger.info("-" * 80)
        for _, row in table.iterrows():
            reliable = 'no' if row.get('low_confidence', False) else 'yes'
            n_obs = row.get('n_obs', '')
            logger.info(f"{str(row['species']):<35} {row['threshold']:<12.4f} {str(n_obs):<6} {reliable:<8}")

    def save_results(self, batch: SpeciesThresholdBatch, output_path: str, plot_dir: Optional[str] = None):
        """
        Save the threshold table, the prediction curves and optional plots.

        Args:
            batch: Results of fit_species
            output_path: Path of the threshold table CSV
            plot_dir: Optional directory for one PNG plot per species
        """
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        batch.thresholds.to_csv(output_file, index=False)
        logger.info("Species thresholds saved to: %s", output_file)

        curves = pd.concat(
            [result.predictions.assign(species=name) for name, result in batch.results.items()],
            ignore_index=True,
        )
        curves_file = output_file.with_name(f"{output_file.stem}_predictions.csv")
        curves.to_csv(curves_file, index=False)
        logger.info("Prediction curves saved to: %s", curves_file)

        if plot_dir:
            for name, result in batch.results.items():
                safe_name = ''.join(c if c.isalnum() else '_' for c in name)
                plot_file = Path(plot_dir) / f"threshold_{safe_name}.png"
                self.plot(result, output_path=str(plot_file))
                logger.info("Threshold plot saved to: %s", plot_file)


def species_threshold(df: pd.DataFrame, valid_col: str, conf_col: str,
                      p: float = config.DEFAULT_TARGET_PRECISION,
                      backtransform: bool = True,
                      sensitivity: float = config.DEFAULT_SENSITIVITY,
                      threshold_only: bool = False,
                      plot: bool = False,
                      plot_logit: bool = False,
                      plot_path: Optional[str] = None,
                      strict: bool = True) -> Union[float, SpeciesThresholdResult]:
    """
    Calculate the confidence threshold of a single species.

    Args:
        df: Validated detections of a single species
        valid_col: Column with binary validation labels (0/1, True/False)
        conf_col: Column with confidence scores
        p: Target probability of a correct detection (default: 0.95)
        backtransform: If True, fit on logit-transformed scores with the sensitivity parameter
        sensitivity: Sensitivity parameter of the logit transformation (default: 1.0)
        threshold_only: If True, return only the threshold value
        plot: If True, plot the fitted curve
        plot_logit: If True and backtransform is True, plot on the logit scale
        plot_path: Optional PNG path for the plot
        strict: If False, drop confidence scores of exactly 0 or 1 instead of failing

    Returns:
        Threshold, or the complete SpeciesThresholdResult
    """
    analyzer = SpeciesThresholdAnalyzer(valid_col=valid_col, conf_col=conf_col, p=p,
                                        backtransform=backtransform, sensitivity=sensitivity,
                                        strict=strict, plot_logit=plot_logit)
    result = analyzer.calibrate(df)
    if plot:
        analyzer.plot(result, output_path=plot_path)
    if threshold_only:
        return result.threshold
    return result


def species_thresholds(df: pd.DataFrame, valid_col: str, conf_col: str,
                       species_col: str = config.SPECIES_COL,
                       species: Optional[List[str]] = None,
                       p: float = config.DEFAULT_TARGET_PRECISION,
                       backtransform: bool = True,
                       sensitivity: float = config.DEFAULT_SENSITIVITY,
                       threshold_only: bool = False,
                       strict: bool = True,
                       verbose: bool = False) -> Union[pd.DataFrame, SpeciesThresholdBatch]:
    """
    Calculate confidence thresholds for several species, each fitted independently.

    See SpeciesThresholdAnalyzer.fit_species.
    """
    analyzer = SpeciesThresholdAnalyzer(valid_col=valid_col, conf_col=conf_col, p=p,
                                        backtransform=backtransform, sensitivity=sensitivity, strict=strict)
    return analyzer.fit_species(df, species_col=species_col, species=species,
                                threshold_only=threshold_only, verbose=verbose)


def main(argv=None):
    """Main function to run species threshold analysis."""
    parser = argparse.ArgumentParser(
        description='Calculate per-species confidence thresholds from validated detections',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Example:
    ecoacoustics-species-threshold --input validated.csv --output results/thresholds.csv \\
        --valid-col valid --conf-col confidence --p 0.95 --plot-dir results/plots
        """
    )

    parser.add_argument('--input', type=str, required=True, help='Path to validated detections CSV file')
    parser.add_argument('--output', type=str, required=True, help='Path of the output threshold CSV file')
    parser.add_argument('--valid-col', type=str, default=config.VALID_COL, help='Validation label column')
    parser.add_argument('--conf-col', type=str, default=config.CONFIDENCE_COL, help='Confidence column')
    parser.add_argument('--species-col', type=str, default=config.SPECIES_COL, help='Species column')
    parser.add_argument('--species', type=str, nargs='+', default=None, help='Species to fit (default: all)')
    parser.add_argument('--p', type=float, default=config.DEFAULT_TARGET_PRECISION,
                        help='Target probability of a correct detection (default: 0.95)')
    parser.add_argument('--no-backtransform', action='store_true',
                        help='Fit on raw confidence scores instead of logit-transformed scores')
    parser.add_argument('--sensitivity', type=float, default=config.DEFAULT_SENSITIVITY,
                        help='Sensitivity of the logit transformation (default: 1.0)')
    parser.add_argument('--lenient', action='store_true',
                        help='Drop confidence scores of exactly 0 or 1 instead of failing')
    parser.add_argument('--plot-dir', type=str, default=None, help='Directory for per-species plots')
    parser.add_argument('--plot-logit', action='store_true', help='Plot on the logit scale')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(message)s')

    print("=" * 80)
    print("SPECIES THRESHOLD ANALYSIS")
    print("=" * 80)
    print(f"Input: {args.input}")
    print(f"Target probability: {args.p}")
    print(f"Predictor: {'confidence' if args.no_backtransform else f'logit(confidence) / {args.sensitivity}'}")
    print(f"Output: {args.output}")
    print("=" * 80)

    try:
        analyzer = SpeciesThresholdAnalyzer(valid_col=args.valid_col, conf_col=args.conf_col, p=args.p,
                                            backtransform=not args.no_backtransform,
                                            sensitivity=args.sensitivity, strict=not args.lenient,
                                            plot_logit=args.plot_logit)
        batch = analyzer.fit_species(pd.read_csv(args.input), species_col=args.species_col,
                                     species=args.species, verbose=True)
        analyzer.print_summary(batch.thresholds)
        analyzer.save_results(batch, args.output, plot_dir=args.plot_dir)

        print("\n" + "=" * 80)
        print("ANALYSIS COMPLETE")
        print("=" * 80)
        return 0
    except Exception as e:
        print(f"\nError during analysis: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
