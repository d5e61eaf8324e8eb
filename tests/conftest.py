from pathlib import Path

import numpy as np
import pytest

from featuredb.data_models import FeatureRow
from featuredb.schema import Schema

SPECTRUM_WIDTH = 4
FLUX_WIDTH = 2


def make_row(i: int, file_name: str = "piano/60.wav"):
    """
    Row whose every value is derived from i, so misaligned columns are easy to spot
    """
    return FeatureRow(
        label=i * 10,
        offset=i,
        file_name=file_name,
        features={
            "spectrum": np.arange(SPECTRUM_WIDTH, dtype=np.float64) + i,
            "spectrum_flux": np.full(FLUX_WIDTH, i / 2),
        },
    )


def assert_row_is_consistent(row: FeatureRow):
    i = row.offset
    assert row.label == i * 10
    assert np.array_equal(row.features["spectrum"], np.arange(SPECTRUM_WIDTH) + i)
    assert np.array_equal(row.features["spectrum_flux"], np.full(FLUX_WIDTH, i / 2))


@pytest.fixture
def schema():
    return Schema.for_features({"spectrum": SPECTRUM_WIDTH, "spectrum_flux": FLUX_WIDTH})


@pytest.fixture
def store_path(tmp_path: Path):
    return tmp_path / "features.h5"
