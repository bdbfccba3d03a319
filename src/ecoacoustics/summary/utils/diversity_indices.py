"""
Diversity index utilities for site x species community matrices.

All functions take a matrix with one row per site and one column per species
and return one value per row. Relative abundances are taken within each row;
species with zero abundance contribute nothing (0 * ln 0 is taken as 0), and
rows without any abundance get the indices of an empty community
(shannon 0, simpson 0).
"""

import numpy as np
import pandas as pd

from ...exceptions import DataError


def relative_abundances(matrix: np.ndarray) -> np.ndarray:
    """
    Convert abundances into per-row proportions.

    Args:
        matrix: Non-negative site x species abundances

    Returns:
        Matrix of proportions; rows summing to zero stay all zero
    """
    matrix = np.asarray(matrix, dtype=float)
    if (matrix < 0).any():
        raise DataError("Input data must be non-negative to compute diversity indices")

    totals = matrix.sum(axis=1, keepdims=True)
    safe_totals = np.where(totals > 0, totals, 1.0)
    return matrix / safe_totals


def species_richness(matrix: np.ndarray) -> np.ndarray:
    """Hill number q=0: count of species with abundance > 0 per row."""
    return (np.asarray(matrix) > 0).sum(axis=1).astype(int)


def shannon_index(matrix: np.ndarray) -> np.ndarray:
    """Shannon entropy -sum(p * ln p) per row."""
    p = relative_abundances(matrix)
    with np.errstate(divide='ignore', invalid='ignore'):
        terms = np.where(p > 0, -p * np.log(p), 0.0)
    # -0.0 for single species rows
    return np.abs(terms.sum(axis=1))


def simpson_index(matrix: np.ndarray) -> np.ndarray:
    """Gini-Simpson index 1 - sum(p^2) per row."""
    p = relative_abundances(matrix)
    concentration = (p * p).sum(axis=1)
    return np.where(concentration > 0, 1.0 - concentration, 0.0)


def inverse_simpson(matrix: np.ndarray) -> np.ndarray:
    """
    Hill number q=2: 1 / sum(p^2) per row, equal to 1 / (1 - simpson).

    The value grows without bound as simpson approaches 1; it is not capped.
    """
    simpson = simpson_index(matrix)
    with np.errstate(divide='ignore'):
        return 1.0 / (1.0 - simpson)


def diversity_table(matrix: pd.DataFrame) -> pd.DataFrame:
    """
    Compute richness, Shannon, Simpson and the Hill numbers of every site.

    Args:
        matrix: Community matrix with sites as index

    Returns:
        DataFrame indexed like matrix with columns richness, shannon, simpson, q1, q2
    """
    values = matrix.to_numpy(dtype=float)
    shannon = shannon_index(values)

    return pd.DataFrame({
        'richness': species_richness(values),
        'shannon': shannon,
        'simpson': simpson_index(values),
        'q1': np.exp(shannon),
        'q2': inverse_simpson(values),
    }, index=matrix.index)
