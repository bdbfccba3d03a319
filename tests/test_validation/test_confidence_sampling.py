"""Tests for confidence-stratified sampling of detections."""

import numpy as np
import pandas as pd
import pytest

from ecoacoustics import ConfigurationError, DataError, ParseError, SamplingShortfallWarning
from ecoacoustics.validation import ConfidenceSampler, sample_by_confidence
from ecoacoustics.validation.confidence_sampling import confidence_bin_edges, find_confidence_column, main


def _even_detections():
    """Two species with 200 detections each, spread evenly over [0.1, 1.0]."""
    scores = np.linspace(0.1, 1.0, 200)
    return pd.DataFrame({
        'scientific_name': ['Parus major'] * 200 + ['Turdus merula'] * 200,
        'confidence': np.concatenate([scores, scores]),
        'file': [f"rec_{i:03d}.wav" for i in range(400)],
    })


def _skewed_detections():
    """One species with a sparse low-confidence tail and a dense high-confidence mass."""
    low = np.linspace(0.1, 0.19, 3)
    high = np.linspace(0.8, 1.0, 97)
    return pd.DataFrame({
        'scientific_name': ['Sitta europaea'] * 100,
        'confidence': np.concatenate([low, high]),
    })


# ===================================================================
# Bins
# ===================================================================


class TestConfidenceBins:

    def test_edges_cover_maximum(self):
        scores = pd.Series([0.1, 0.5, 1.0])
        edges = confidence_bin_edges(scores, 10)
        assert len(edges) == 11
        assert edges[0] == pytest.approx(0.1)
        assert edges[-1] > 1.0
        assert (np.diff(edges) > 0).all()

    def test_constant_scores(self):
        edges = confidence_bin_edges(pd.Series([0.5, 0.5]), 4)
        assert len(edges) == 5
        assert (np.diff(edges) > 0).all()

    def test_find_confidence_column(self):
        assert find_confidence_column(pd.DataFrame(columns=['Species', 'Confidence'])) == 'Confidence'

    def test_find_confidence_column_ambiguous(self):
        with pytest.raises(ConfigurationError, match="Multiple"):
            find_confidence_column(pd.DataFrame(columns=['confidence', 'raw_confidence']))

    def test_find_confidence_column_absent(self):
        with pytest.raises(ConfigurationError):
            find_confidence_column(pd.DataFrame(columns=['score']))


# ===================================================================
# Sampling
# ===================================================================


class TestSampleByConfidence:

    def test_even_bins_without_resample(self):
        sample = sample_by_confidence(_even_detections(), n_samples=50, n_bins=10, resample=False, seed=1)

        counts = sample.groupby(['scientific_name', 'conf_bin'], observed=True).size()
        assert len(sample) == 100
        assert (counts == 5).all()
        assert counts.groupby(level=0).size().tolist() == [10, 10]

    def test_floor_per_bin_without_resample(self):
        sample = sample_by_confidence(_even_detections(), n_samples=25, n_bins=10, resample=False, seed=1)
        counts = sample.groupby(['scientific_name', 'conf_bin'], observed=True).size()
        assert (counts == 2).all()
        assert counts.max() - counts.min() <= 1

    def test_resample_reaches_exact_count(self):
        sample = sample_by_confidence(_skewed_detections(), n_samples=60, n_bins=10, resample=True, seed=3)
        assert len(sample) == 60
        assert not sample.duplicated(subset=['confidence']).any()

    def test_without_resample_short_bins_stay_short(self):
        sample = sample_by_confidence(_skewed_detections(), n_samples=60, n_bins=10, resample=False, seed=3)
        counts = sample.groupby('conf_bin', observed=True).size()
        assert len(sample) < 60
        assert (counts <= 6).all()

    def test_same_seed_same_sample(self):
        first = sample_by_confidence(_even_detections(), n_samples=30, seed=42)
        second = sample_by_confidence(_even_detections(), n_samples=30, seed=42)
        pd.testing.assert_frame_equal(first, second)

    def test_different_seed_different_sample(self):
        first = sample_by_confidence(_even_detections(), n_samples=30, seed=1)
        second = sample_by_confidence(_even_detections(), n_samples=30, seed=2)
        assert set(first['file']) != set(second['file'])

    def test_bins_shared_across_species(self):
        df = pd.DataFrame({
            'scientific_name': ['A'] * 20 + ['B'] * 20,
            'confidence': np.concatenate([np.linspace(0.1, 0.5, 20), np.linspace(0.6, 1.0, 20)]),
        })
        sample = sample_by_confidence(df, n_samples=10, n_bins=2, resample=False, seed=0)
        bins_a = set(sample.loc[sample['scientific_name'] == 'A', 'conf_bin'].astype(str))
        bins_b = set(sample.loc[sample['scientific_name'] == 'B', 'conf_bin'].astype(str))
        assert len(bins_a) == 1
        assert len(bins_b) == 1
        assert bins_a != bins_b

    def test_confidence_range_filter(self):
        sample = sample_by_confidence(_even_detections(), n_samples=20, min_conf=0.5, max_conf=0.9, seed=0)
        assert sample['confidence'].between(0.5, 0.9).all()

    def test_small_species_returns_everything(self):
        df = pd.concat([
            _even_detections(),
            pd.DataFrame({'scientific_name': ['Rare bird'] * 3, 'confidence': [0.2, 0.5, 0.8]}),
        ], ignore_index=True)
        with pytest.warns(SamplingShortfallWarning, match="Rare bird"):
            sample = sample_by_confidence(df, n_samples=10, seed=0)
        assert (sample['scientific_name'] == 'Rare bird').sum() == 3
        assert (sample['scientific_name'] == 'Parus major').sum() == 10

    def test_species_subset_keeps_order(self):
        sample = sample_by_confidence(_even_detections(), n_samples=10, seed=0,
                                      species=['Turdus merula', 'Parus major'])
        assert sample['scientific_name'].iloc[0] == 'Turdus merula'
        assert sample['scientific_name'].iloc[-1] == 'Parus major'

    def test_single_species_name(self):
        sample = sample_by_confidence(_even_detections(), n_samples=10, seed=0, species='Parus major')
        assert set(sample['scientific_name']) == {'Parus major'}

    def test_dialect_columns(self):
        df = _even_detections().rename(columns={'scientific_name': 'Common Name', 'confidence': 'Confidence'})
        sampler = ConfidenceSampler.for_dialect('table', n_samples=10, seed=0)
        sample = sampler.sample(df)
        assert len(sample) == 20
        assert 'conf_bin' in sample.columns


class TestSampleByConfidenceErrors:

    @pytest.mark.parametrize("kwargs", [
        {'n_samples': 0},
        {'n_bins': -1},
        {'n_samples': 2.5},
        {'resample': 'yes'},
        {'min_conf': 0.9, 'max_conf': 0.1},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ConfigurationError):
            ConfidenceSampler(**kwargs)

    def test_all_problems_reported_together(self):
        with pytest.raises(ConfigurationError) as excinfo:
            ConfidenceSampler(n_samples=0, n_bins=0)
        assert len(excinfo.value.items) == 2

    def test_unknown_species(self):
        with pytest.raises(ConfigurationError, match="Corvus corax"):
            sample_by_confidence(_even_detections(), species=['Corvus corax'])

    def test_missing_species_column(self):
        with pytest.raises(ConfigurationError):
            sample_by_confidence(_even_detections(), species_col='species')

    def test_nothing_in_range(self):
        with pytest.raises(DataError):
            sample_by_confidence(_even_detections(), min_conf=0.01, max_conf=0.05)

    def test_unparseable_confidence(self):
        df = pd.DataFrame({'scientific_name': ['A', 'A'], 'confidence': ['0.5', 'high']})
        with pytest.raises(ParseError, match="high"):
            sample_by_confidence(df, n_samples=1)

    def test_unknown_dialect(self):
        with pytest.raises(ConfigurationError):
            ConfidenceSampler.for_dialect('raven-pro')


class TestSampleByConfidenceCli:

    def test_round_trip(self, tmp_path):
        input_file = tmp_path / 'detections.csv'
        output_file = tmp_path / 'sample' / 'sample.csv'
        _even_detections().to_csv(input_file, index=False)

        code = main(['--input', str(input_file), '--output', str(output_file),
                     '--n-samples', '20', '--n-bins', '5', '--seed', '7'])

        assert code == 0
        sample = pd.read_csv(output_file)
        assert len(sample) == 40
        assert 'conf_bin' in sample.columns

    def test_error_exit_code(self, tmp_path):
        input_file = tmp_path / 'detections.csv'
        _even_detections().to_csv(input_file, index=False)
        code = main(['--input', str(input_file), '--output', str(tmp_path / 'sample.csv'),
                     '--species', 'Corvus corax'])
        assert code == 1
