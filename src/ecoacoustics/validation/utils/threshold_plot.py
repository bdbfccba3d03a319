"""
Plotting utilities for species threshold calibration results.
"""

from pathlib import Path
from typing import Optional

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np


def plot_species_threshold(result, output_path: Optional[str] = None, plot_logit: bool = False,
                           figsize: tuple = (10, 6)):
    """
    Plot the fitted probability curve of a species threshold calibration.

    Shows the prediction curve with its 95% confidence band, the observed
    validation labels, the threshold and the target probability.

    Args:
        result: SpeciesThresholdResult from the threshold analyzer
        output_path: Optional path of a PNG file to save the figure to
        plot_logit: If True, use the logit scale (only with the logit transform)
        figsize: Figure size as (width, height) tuple

    Returns:
        The matplotlib Figure
    """
    params = result.parameters
    backtransform = params['backtransform']
    conf_col = params['conf_col']
    valid_col = params['valid_col']
    p = params['p']
    plot_logit = plot_logit and backtransform

    predictions = result.predictions
    observations = result.observations

    if plot_logit:
        x_values = predictions['score_transformed'].to_numpy()
        x_data = observations['score_transformed'].to_numpy()
        x_threshold = result.logit_threshold
        x_label = 'Logit-transformed Confidence Score'
        x_min, x_max = np.min(x_data), np.max(x_data)
        x_range = x_max - x_min
        x_limits = (x_min - 0.1 * x_range, x_max + 0.1 * x_range)
        title = 'Species Threshold Analysis (Logit Scale)'
    else:
        x_values = predictions['score_original'].to_numpy()
        x_data = observations[conf_col].to_numpy()
        x_threshold = result.threshold
        x_label = 'Confidence Score'
        x_limits = (0, 1)
        title = 'Species Threshold Analysis' + (' (Original Scale)' if backtransform else '')

    if result.species is not None:
        title = f'{title} - {result.species}'
    threshold_label = f'{x_threshold:.3f}'

    fig, ax = plt.subplots(figsize=figsize)

    ax.fill_between(x_values, predictions['lower_ci'], predictions['upper_ci'],
                    color='blue', alpha=0.2, linewidth=0, label='95% CI')
    ax.plot(x_values, predictions['pred_prob'], color='blue', linewidth=2, label='Prediction')
    ax.scatter(x_data, observations[valid_col], color='black', s=16, zorder=3)

    ax.axvline(x_threshold, color='red', linestyle='--', linewidth=2, label=f'Threshold ({threshold_label})')
    ax.axhline(p, color='red', linestyle=':', linewidth=1, label=f'P = {p}')
    ax.scatter([x_threshold], [p], color='red', s=30, zorder=4)
    ax.annotate(threshold_label, xy=(x_threshold, p), xytext=(4, -12), textcoords='offset points', color='red')

    if backtransform:
        # legend-only entries
        ax.plot([], [], ' ', label=f"Sensitivity = {params['sensitivity']}")
        if plot_logit:
            ax.plot([], [], ' ', label='Logit scale')

    ax.set_xlabel(x_label)
    ax.set_ylabel('Probability of True Positive')
    ax.set_title(title)
    ax.set_xlim(*x_limits)
    ax.set_ylim(0, 1)
    ax.grid(True, alpha=0.3)
    ax.legend(loc='lower right', fontsize=8)
    fig.tight_layout()

    if output_path:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_file, dpi=300, bbox_inches='tight')
        plt.close(fig)

    return fig
