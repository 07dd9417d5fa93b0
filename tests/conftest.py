"""
Pytest configuration and fixtures for battery-monitor tests.
"""

import json
import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


@pytest.fixture
def nominal_sample():
    """Healthy pack at rest, lightly discharging."""
    return {'temp': 25, 'voltage': 360, 'current': -20, 'soc': 90, 'soh': 95}


@pytest.fixture
def stressed_sample():
    """Hot pack under heavy discharge with low charge."""
    return {'temp': 47, 'voltage': 376, 'current': -130, 'soc': 12, 'soh': 70}


@pytest.fixture
def mixed_samples():
    """Three samples, flat and 'enc'-nested."""
    return [
        {'temp': 25, 'voltage': 360, 'current': -20, 'soc': 90, 'soh': 95},
        {'id': 2, 'enc': {'temp': 43, 'voltage': 371, 'current': 30, 'soc': 60, 'soh': 80}},
        {'temp': 50, 'voltage': 380, 'current': -150, 'soc': 10, 'soh': 60},
    ]


@pytest.fixture
def dataset_file(tmp_path, mixed_samples):
    """mixed_samples written to a JSON file."""
    path = tmp_path / 'enc_data.json'
    path.write_text(json.dumps(mixed_samples))
    return path


class FakeClock:
    """Deterministic clock advancing a fixed step per call."""

    def __init__(self, start=None, step_seconds=3.0):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.step = timedelta(seconds=step_seconds)
        self.calls = 0

    def __call__(self):
        current = self.now
        self.now += self.step
        self.calls += 1
        return current


@pytest.fixture
def fake_clock():
    return FakeClock()
