#################################################################################################################
### This file contains the defaults for the detection summaries as well as for the validation of detections   ###
#################################################################################################################

from dataclasses import dataclass, fields, replace
from typing import Dict, List, Optional

import pandas as pd

from .exceptions import ConfigurationError, missing_columns_error


### Default column names of a detection table ###
SITE_COL = 'site'
SPECIES_COL = 'scientific_name'
TIME_COL = 'timestamp'
DATE_COL = 'date'
CONFIDENCE_COL = 'confidence'
RECORDING_LENGTH_COL = 'recording_length'
VALID_COL = 'valid'

# vocal activity rates are stored under this name and picked up by the diversity summary
VAR_COL = 'var'

# column added by the sampler to tag the confidence bin of each sampled row
CONF_BIN_COL = 'conf_bin'


### Vocal activity ###
VAR_METHODS = ('interval_deduplication', 'total_detections', 'detections_per_day')
DEFAULT_VAR_METHOD = 'interval_deduplication'
DEFAULT_INTERVAL_UNIT = 'minute'

# interval units accepted by the activity engine, singular form
INTERVAL_UNITS = ('second', 'minute', 'hour', 'day', 'week', 'month', 'year')

# combined date + time format used when the time column is colon delimited
COLON_TIME_FORMAT = '%H:%M:%S'
# compact 6 digit time encoding (e.g. 093015)
COMPACT_TIME_FORMAT = '%H%M%S'
DATE_FORMAT = '%Y-%m-%d'


### Site diversity ###
SUMMARY_STATISTICS = ('sum', 'mean', 'median', 'max', 'min')
DEFAULT_SUMMARY_STATISTIC = 'sum'


### Species threshold ###
DEFAULT_TARGET_PRECISION = 0.95
DEFAULT_SENSITIVITY = 1.0
MIN_RELIABLE_OBSERVATIONS = 10
PREDICTION_GRID_SIZE = 100
# grid bounds on the logit path, exact 0 and 1 would give infinite logits
LOGIT_GRID_BOUNDS = (0.0001, 0.9999)
CONFIDENCE_LEVEL = 0.95
GLM_MAX_ITER = 25
GLM_TOLERANCE = 1e-8


### Confidence sampling ###
DEFAULT_N_SAMPLES = 100
DEFAULT_N_BINS = 10
DEFAULT_MIN_CONF = 0.1
DEFAULT_MAX_CONF = 1.0


@dataclass(frozen=True)
class ColumnMap:
    """
    Binding of semantic roles to the column names of one detection table.

    Upstream exports name the same fields differently, so every analysis takes
    a ColumnMap (or the equivalent keyword arguments) and validates it once
    against the table before computing anything.
    """
    site: Optional[str] = SITE_COL
    species: str = SPECIES_COL
    time: str = TIME_COL
    date: Optional[str] = DATE_COL
    confidence: str = CONFIDENCE_COL
    recording_length: Optional[str] = RECORDING_LENGTH_COL
    valid: str = VALID_COL
    abundance: Optional[str] = None

    @classmethod
    def for_dialect(cls, dialect: str, **overrides) -> 'ColumnMap':
        """
        Get the column preset of a detection export dialect.

        Args:
            dialect: One of the keys of EXPORT_DIALECTS
            **overrides: Roles to rebind on top of the preset

        Returns:
            ColumnMap for the dialect
        """
        if dialect not in EXPORT_DIALECTS:
            raise ConfigurationError(
                f"Invalid dialect '{dialect}'. Choose from: {', '.join(EXPORT_DIALECTS)}",
                items=[dialect],
            )
        return replace(EXPORT_DIALECTS[dialect], **overrides)

    def roles(self) -> Dict[str, Optional[str]]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def require(self, df: pd.DataFrame, roles: List[str]) -> None:
        """
        Check that the columns bound to ``roles`` exist in ``df``.

        Roles bound to None are optional and skipped. All absent columns are
        reported together in one ConfigurationError.
        """
        unknown = [role for role in roles if role not in self.roles()]
        if unknown:
            raise ConfigurationError(f"Unknown column roles: {', '.join(unknown)}", items=unknown)

        missing = []
        for role in roles:
            name = getattr(self, role)
            if name is not None and name not in df.columns and name not in missing:
                missing.append(name)
        if missing:
            raise missing_columns_error(missing)


# Column presets of the detection exports the pipeline is fed with
EXPORT_DIALECTS: Dict[str, ColumnMap] = {
    # Raven selection table
    'table': ColumnMap(species='Common Name', confidence='Confidence'),
    # Audacity label export, label holds the species
    'audacity': ColumnMap(species='label', confidence='confidence'),
    'kaleidoscope': ColumnMap(species='scientific_name', confidence='confidence'),
    # generic BirdNET CSV
    'csv': ColumnMap(species='Scientific name', confidence='Confidence'),
}
