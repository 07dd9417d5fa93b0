"""
Telemetry dataset loading and validation.

The dataset is a JSON array of samples, each either flat:

    {"temp": 31.2, "voltage": 362.5, "current": -42.0, "soc": 76, "soh": 91}

or nested under "enc" alongside other metadata:

    {"id": 7, "enc": {"temp": 31.2, "voltage": 362.5, ...}}

It is read and validated once at startup. Any problem is a DatasetError:
the daemon reports it and exits instead of serving partial data.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

import numpy as np

from ..engine.derivation import TELEMETRY_FIELDS, normalize
from ..errors import DatasetError, SampleValidationError
from ..interfaces.diagnostic_record import TelemetrySample

logger = logging.getLogger(__name__)

PERCENT_FIELDS = ('soc', 'soh')


def load_samples(path: Union[str, Path]) -> List[Any]:
    """
    Read the raw dataset from a JSON file.

    Args:
        path: Path to the JSON dataset

    Returns:
        Non-empty list of raw sample entries

    Raises:
        DatasetError: If the file is missing or unreadable, is not valid
            JSON, or does not hold a non-empty array
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise DatasetError(f"dataset not found: {path}")
    except json.JSONDecodeError as e:
        raise DatasetError(f"dataset is not valid JSON: {path}: {e}")
    except OSError as e:
        raise DatasetError(f"cannot read dataset {path}: {e}")

    if not isinstance(data, list) or not data:
        raise DatasetError(f"{path.name} must be a non-empty array")

    logger.info(f"Loaded {len(data)} samples from {path}")
    return data


def validate_samples(
    raw_samples: Sequence[Any],
    strict_ranges: bool = False
) -> List[TelemetrySample]:
    """
    Normalize every raw sample, failing on the first malformed one.

    SoC and SoH outside 0-100 % are accepted by the derivation engine;
    here they are logged, or rejected when strict_ranges is set.

    Args:
        raw_samples: Entries returned by load_samples()
        strict_ranges: Reject out-of-range SoC/SoH instead of warning

    Returns:
        TelemetrySamples in dataset order

    Raises:
        SampleValidationError: With the index of the offending sample
    """
    samples = []
    for index, raw in enumerate(raw_samples):
        try:
            sample = normalize(raw)
        except SampleValidationError as e:
            raise SampleValidationError(str(e), index=index, field=e.field)

        for name in PERCENT_FIELDS:
            value = getattr(sample, name)
            if 0 <= value <= 100:
                continue
            if strict_ranges:
                raise SampleValidationError(
                    f"field '{name}' out of range [0, 100]: {value}",
                    index=index, field=name
                )
            logger.warning(f"Sample {index}: {name}={value} outside [0, 100]")

        samples.append(sample)

    return samples


def summarize(samples: Sequence[TelemetrySample]) -> Dict[str, Dict[str, float]]:
    """
    Per-field min/max/mean over the dataset.

    Returns:
        {'temp': {'min': ..., 'max': ..., 'mean': ...}, ...}
    """
    if not samples:
        return {}

    values = np.array(
        [[getattr(s, name) for name in TELEMETRY_FIELDS] for s in samples],
        dtype=np.float64
    )

    return {
        name: {
            'min': float(values[:, i].min()),
            'max': float(values[:, i].max()),
            'mean': float(values[:, i].mean()),
        }
        for i, name in enumerate(TELEMETRY_FIELDS)
    }


def load_dataset(
    path: Union[str, Path],
    strict_ranges: bool = False
) -> tuple[List[Any], List[TelemetrySample]]:
    """
    Load and validate a dataset in one step.

    Returns:
        (raw_samples, normalized_samples)
    """
    raw_samples = load_samples(path)
    samples = validate_samples(raw_samples, strict_ranges=strict_ranges)

    for name, stats in summarize(samples).items():
        logger.info(
            f"  {name:8s} min={stats['min']:8.2f} max={stats['max']:8.2f} mean={stats['mean']:8.2f}"
        )

    return raw_samples, samples
