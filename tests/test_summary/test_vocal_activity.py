"""Tests for vocal activity rates and timestamp resolution.

Covers:
  - interval deduplication, total detections and daily means
  - interval parsing and flooring (multiples, months, weeks)
  - date + time resolution (HH:MM:SS, HHMMSS, ISO timestamps)
  - recording length handling and its fallback
  - error taxonomy (missing columns, bad parameters, unparseable values)
  - command line round trip
"""

import logging

import numpy as np
import pandas as pd
import pytest

from ecoacoustics import ConfigurationError, DataError, ParseError
from ecoacoustics.config import ColumnMap
from ecoacoustics.summary import VocalActivityAnalyzer, species_frequency, vocal_activity, vocal_activity_rate
from ecoacoustics.summary.utils.time_intervals import (
    floor_to_interval,
    parse_interval_unit,
    resolve_detection_times,
)
from ecoacoustics.summary.vocal_activity_analysis import main


def _detections(rows):
    return pd.DataFrame(rows, columns=['site', 'scientific_name', 'date', 'timestamp'])


def _random_detections(seed=7, n=400):
    rng = np.random.default_rng(seed)
    seconds = rng.integers(0, 6 * 3600, size=n)
    times = [f"{s // 3600:02d}:{(s % 3600) // 60:02d}:{s % 60:02d}" for s in seconds]
    return pd.DataFrame({
        'site': rng.choice(['A', 'B'], size=n),
        'scientific_name': rng.choice(['Turdus merula', 'Parus major', 'Sitta europaea'], size=n),
        'date': rng.choice(['2024-05-01', '2024-05-02'], size=n),
        'timestamp': times,
    })


# ===================================================================
# Interval parsing and flooring
# ===================================================================


class TestIntervalUnits:

    @pytest.mark.parametrize("interval, expected", [
        ("minute", (1, "minute")),
        ("minutes", (1, "minute")),
        ("15 minutes", (15, "minute")),
        ("2 hours", (2, "hour")),
        ("Day", (1, "day")),
        ("month", (1, "month")),
        ("3 months", (3, "month")),
        ("year", (1, "year")),
    ])
    def test_parse(self, interval, expected):
        assert parse_interval_unit(interval) == expected

    @pytest.mark.parametrize("interval", ["fortnight", "0 minutes", "", "minute hour", "2 weeks"])
    def test_parse_rejects_invalid(self, interval):
        with pytest.raises(ConfigurationError):
            parse_interval_unit(interval)

    def test_floor_minute_multiple(self):
        times = pd.Series(pd.to_datetime(['2024-05-01 10:01:00', '2024-05-01 10:14:59', '2024-05-01 10:16:00']))
        floored = floor_to_interval(times, '15 minutes')
        assert list(floored) == list(pd.to_datetime(['2024-05-01 10:00', '2024-05-01 10:00', '2024-05-01 10:15']))

    def test_floor_month(self):
        times = pd.Series(pd.to_datetime(['2024-01-05 08:00', '2024-01-31 23:59', '2024-02-01 00:00']))
        floored = floor_to_interval(times, 'month')
        assert list(floored) == list(pd.to_datetime(['2024-01-01', '2024-01-01', '2024-02-01']))

    def test_floor_week_starts_on_sunday(self):
        # 2024-05-05 is a Sunday
        times = pd.Series(pd.to_datetime(['2024-05-04 12:00', '2024-05-05 00:30', '2024-05-11 23:00']))
        floored = floor_to_interval(times, 'week')
        assert list(floored) == list(pd.to_datetime(['2024-04-28', '2024-05-05', '2024-05-05']))


# ===================================================================
# Timestamp resolution
# ===================================================================


class TestResolveDetectionTimes:

    def test_colon_times_with_date(self):
        df = pd.DataFrame({'date': ['2024-05-01'], 'timestamp': ['09:30:15']})
        resolved = resolve_detection_times(df, 'timestamp', 'date')
        assert resolved.iloc[0] == pd.Timestamp('2024-05-01 09:30:15')

    def test_compact_integer_times_keep_leading_zeros(self):
        df = pd.DataFrame({'date': ['2024-05-01', '2024-05-01'], 'timestamp': [93015, 5]})
        resolved = resolve_detection_times(df, 'timestamp', 'date')
        assert resolved.iloc[0] == pd.Timestamp('2024-05-01 09:30:15')
        assert resolved.iloc[1] == pd.Timestamp('2024-05-01 00:00:05')

    def test_explicit_time_format(self):
        df = pd.DataFrame({'date': ['2024-05-01'], 'timestamp': ['09.30']})
        resolved = resolve_detection_times(df, 'timestamp', 'date', time_format='%H.%M')
        assert resolved.iloc[0] == pd.Timestamp('2024-05-01 09:30:00')

    def test_iso_timestamp_without_date_column(self):
        df = pd.DataFrame({'timestamp': ['2024-05-01T09:30:15', '2024-05-02 23:59:59']})
        resolved = resolve_detection_times(df, 'timestamp', None)
        assert list(resolved) == list(pd.to_datetime(['2024-05-01 09:30:15', '2024-05-02 23:59:59']))

    def test_datetime_column_used_as_is(self):
        df = pd.DataFrame({'timestamp': pd.to_datetime(['2024-05-01 09:30:15'])})
        resolved = resolve_detection_times(df, 'timestamp', 'date')
        assert resolved.iloc[0] == pd.Timestamp('2024-05-01 09:30:15')

    def test_unparseable_time_names_value(self):
        df = pd.DataFrame({'date': ['2024-05-01', '2024-05-01'], 'timestamp': ['09:30:15', 'noon']})
        with pytest.raises(ParseError, match="noon") as excinfo:
            resolve_detection_times(df, 'timestamp', 'date')
        assert excinfo.value.value == 'noon'

    def test_unparseable_date(self):
        df = pd.DataFrame({'date': ['yesterday'], 'timestamp': ['09:30:15']})
        with pytest.raises(ParseError, match="yesterday"):
            resolve_detection_times(df, 'timestamp', 'date')

    def test_missing_date(self):
        df = pd.DataFrame({'date': ['2024-05-01', None], 'timestamp': ['09:30:15', '00:00:45']})
        with pytest.raises(ParseError, match="Missing detection date in column 'date' at row 1"):
            resolve_detection_times(df, 'timestamp', 'date')

    def test_missing_time(self):
        df = pd.DataFrame({'date': ['2024-05-01'], 'timestamp': [None]})
        with pytest.raises(ParseError):
            resolve_detection_times(df, 'timestamp', 'date')


# ===================================================================
# Vocal activity rates
# ===================================================================


class TestVocalActivity:

    def test_same_minute_counts_once(self):
        df = _detections([
            ('A', 'X', '2024-05-01', '00:00:30'),
            ('A', 'X', '2024-05-01', '00:00:45'),
        ])
        result = vocal_activity(df, interval_unit='minute')
        assert len(result) == 1
        assert result.loc[0, 'detection_count'] == 1
        assert result.loc[0, 'days_recorded'] == 1
        assert result.loc[0, 'var'] == 1.0

    def test_total_detections_counts_every_row(self):
        df = _detections([
            ('A', 'X', '2024-05-01', '00:00:30'),
            ('A', 'X', '2024-05-01', '00:00:45'),
        ])
        result = vocal_activity(df, method='total_detections')
        assert result.loc[0, 'detection_count'] == 2

    def test_vocal_activity_rate_deduplicates(self):
        df = _detections([
            ('A', 'X', '2024-05-01', '10:01:00'),
            ('A', 'X', '2024-05-01', '10:14:00'),
            ('A', 'X', '2024-05-01', '10:16:00'),
        ])
        result = vocal_activity_rate(df, interval_unit='15 minutes')
        assert result.loc[0, 'detection_count'] == 2

    def test_detections_per_day_is_daily_mean(self):
        df = _detections([
            ('A', 'X', '2024-05-01', '06:00:00'),
            ('A', 'X', '2024-05-01', '06:00:01'),
            ('A', 'X', '2024-05-01', '07:00:00'),
            ('A', 'X', '2024-05-02', '06:00:00'),
        ])
        df['recording_length'] = 10
        result = vocal_activity(df, method='detections_per_day')
        row = result.iloc[0]
        assert row['detection_count'] == 4
        assert row['days_recorded'] == 2
        assert row['var'] == pytest.approx(2.0)

    def test_recording_length_divides_counts(self):
        df = _detections([
            ('A', 'X', '2024-05-01', '06:00:00'),
            ('A', 'X', '2024-05-01', '07:00:00'),
        ])
        df['recording_length'] = [4, None]
        result = vocal_activity(df)
        assert result.loc[0, 'days_recorded'] == 4
        assert result.loc[0, 'var'] == pytest.approx(0.5)

    def test_recording_length_fallback_is_logged(self, caplog):
        df = _detections([
            ('A', 'X', '2024-05-01', '06:00:00'),
            ('A', 'X', '2024-05-02', '06:00:00'),
            ('B', 'X', '2024-05-01', '06:00:00'),
        ])
        df['recording_length'] = [None, None, 3]
        with caplog.at_level(logging.WARNING):
            result = vocal_activity(df)
        by_site = result.set_index('site')
        assert by_site.loc['A', 'days_recorded'] == 2
        assert by_site.loc['B', 'days_recorded'] == 3
        assert "recording_length" in caplog.text

    def test_non_numeric_recording_length(self):
        df = _detections([('A', 'X', '2024-05-01', '06:00:00')])
        df['recording_length'] = ['a week']
        with pytest.raises(ParseError):
            vocal_activity(df)

    def test_zero_recording_length(self):
        df = _detections([('A', 'X', '2024-05-01', '06:00:00')])
        df['recording_length'] = [0]
        with pytest.raises(DataError):
            vocal_activity(df)

    def test_species_level_rates(self):
        df = _detections([
            ('A', 'X', '2024-05-01', '06:00:00'),
            ('B', 'X', '2024-05-01', '06:00:10'),
        ])
        result = vocal_activity(df, site_col=None)
        assert list(result.columns) == ['scientific_name', 'detection_count', 'days_recorded', 'var']
        assert result.loc[0, 'detection_count'] == 1

    def test_sorted_by_species_then_site(self):
        df = _detections([
            ('B', 'Y', '2024-05-01', '06:00:00'),
            ('A', 'Y', '2024-05-01', '06:00:00'),
            ('B', 'X', '2024-05-01', '06:00:00'),
        ])
        result = vocal_activity(df)
        assert list(zip(result['scientific_name'], result['site'])) == [('X', 'B'), ('Y', 'A'), ('Y', 'B')]

    def test_coarser_interval_never_increases_counts(self):
        df = _random_detections()
        minute = vocal_activity(df, interval_unit='minute').set_index(['site', 'scientific_name'])
        hour = vocal_activity(df, interval_unit='hour').set_index(['site', 'scientific_name'])
        day = vocal_activity(df, interval_unit='day').set_index(['site', 'scientific_name'])
        total = vocal_activity(df, method='total_detections').set_index(['site', 'scientific_name'])

        assert (minute['detection_count'] <= total['detection_count']).all()
        assert (hour['detection_count'] <= minute['detection_count']).all()
        assert (day['detection_count'] <= hour['detection_count']).all()

    def test_custom_column_names(self):
        df = pd.DataFrame({
            'plot': ['A', 'A'],
            'species': ['X', 'X'],
            'when': ['2024-05-01 06:00:00', '2024-05-01 07:00:00'],
        })
        result = vocal_activity(df, interval_unit='hour', time_col='when', date_col=None,
                                species_col='species', site_col='plot', recording_length_col=None)
        assert list(result.columns) == ['plot', 'species', 'detection_count', 'days_recorded', 'var']
        assert result.loc[0, 'detection_count'] == 2


class TestVocalActivityErrors:

    def test_missing_columns_reported_together(self):
        df = pd.DataFrame({'site': ['A'], 'date': ['2024-05-01']})
        with pytest.raises(ConfigurationError) as excinfo:
            vocal_activity(df)
        assert excinfo.value.items == ['scientific_name', 'timestamp']
        assert "scientific_name, timestamp" in str(excinfo.value)

    def test_invalid_method(self):
        with pytest.raises(ConfigurationError, match="Invalid method"):
            VocalActivityAnalyzer(method='per_hour')

    def test_invalid_interval_fails_before_data(self):
        with pytest.raises(ConfigurationError):
            VocalActivityAnalyzer(interval_unit='fortnight')

    def test_empty_table(self):
        df = _detections([])
        with pytest.raises(DataError):
            vocal_activity(df)

    def test_null_site(self):
        df = _detections([(None, 'X', '2024-05-01', '06:00:00')])
        with pytest.raises(DataError, match="site"):
            vocal_activity(df)

    def test_not_a_dataframe(self):
        with pytest.raises(TypeError):
            VocalActivityAnalyzer().compute([('A', 'X')])

    def test_dialect_columns(self):
        columns = ColumnMap.for_dialect('csv', site=None, time='Begin Time', date=None, recording_length=None)
        df = pd.DataFrame({'Scientific name': ['X', 'X'], 'Begin Time': ['2024-05-01 06:00:01', '2024-05-01 06:00:02']})
        result = VocalActivityAnalyzer(columns=columns).compute(df)
        assert result.loc[0, 'detection_count'] == 1


class TestSpeciesFrequency:

    def test_counts_per_species(self):
        df = pd.DataFrame({'scientific_name': ['X', 'X', 'Y']})
        result = species_frequency(df)
        assert dict(zip(result['scientific_name'], result['count'])) == {'X': 2, 'Y': 1}

    def test_counts_per_level(self):
        df = pd.DataFrame({'file': ['f1', 'f1', 'f2'], 'scientific_name': ['X', 'X', 'X']})
        result = species_frequency(df, level_col='file')
        assert list(result.columns) == ['file', 'scientific_name', 'count']
        assert list(result['count']) == [2, 1]

    def test_missing_level_column(self):
        with pytest.raises(ConfigurationError):
            species_frequency(pd.DataFrame({'scientific_name': ['X']}), level_col='file')


# ===================================================================
# Command line
# ===================================================================


class TestVocalActivityCli:

    def test_round_trip(self, tmp_path):
        input_file = tmp_path / 'detections.csv'
        output_file = tmp_path / 'out' / 'var.csv'
        _detections([
            ('A', 'X', '2024-05-01', '00:00:30'),
            ('A', 'X', '2024-05-01', '00:00:45'),
            ('A', 'X', '2024-05-02', '00:05:00'),
        ]).to_csv(input_file, index=False)

        assert main(['--input', str(input_file), '--output', str(output_file)]) == 0

        result = pd.read_csv(output_file)
        assert result.loc[0, 'detection_count'] == 2
        assert result.loc[0, 'var'] == pytest.approx(1.0)

    def test_error_exit_code(self, tmp_path):
        input_file = tmp_path / 'detections.csv'
        pd.DataFrame({'site': ['A']}).to_csv(input_file, index=False)
        assert main(['--input', str(input_file), '--output', str(tmp_path / 'var.csv')]) == 1
