import pytest

from linkedmut.toy_data import make_toy_data


@pytest.fixture
def toy(tmp_path):
    return make_toy_data(outdir=tmp_path / "toy")
