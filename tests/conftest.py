"""Shared pytest fixtures for all test modules."""

import numpy as np
import pandas as pd
import pytest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast unit tests with no external tools")


def make_long_table(
    n_individuals: int = 60,
    positions=(100, 200, 300, 400),
    seed: int = 42,
    monomorphic=(),
) -> pd.DataFrame:
    """
    Build a long-format genotype/phenotype table.

    One row per (variant, individual). ``height`` depends on the dosage at
    the first position plus age; ``bmi`` is noise. Positions listed in
    ``monomorphic`` get dosage 0 for every individual.
    """
    rng = np.random.default_rng(seed)
    samples = [f"S{i:03d}" for i in range(n_individuals)]
    age = rng.normal(50, 10, n_individuals).round(1)
    sex = rng.integers(0, 2, n_individuals)
    pc1 = rng.normal(0, 1, n_individuals)
    dosages = {
        pos: (
            np.zeros(n_individuals, dtype=int)
            if pos in monomorphic
            else rng.binomial(2, 0.3, n_individuals)
        )
        for pos in positions
    }
    height = 160 + 3.0 * dosages[positions[0]] + 0.1 * age + rng.normal(0, 2, n_individuals)
    bmi = 25 + rng.normal(0, 3, n_individuals)

    frames = []
    for pos in positions:
        frames.append(
            pd.DataFrame(
                {
                    "chromosome": 1,
                    "position": pos,
                    "sample_id": samples,
                    "genotype": dosages[pos],
                    "height": height,
                    "bmi": bmi,
                    "age": age,
                    "sex": sex,
                    "pc1": pc1,
                }
            )
        )
    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def long_table() -> pd.DataFrame:
    """60 individuals x 4 polymorphic variants on chromosome 1."""
    return make_long_table()


@pytest.fixture
def table_with_monomorphic() -> pd.DataFrame:
    """Like long_table, but position 300 is monomorphic."""
    return make_long_table(monomorphic=(300,))


@pytest.fixture
def tiny_table() -> pd.DataFrame:
    """Hand-checkable table: 4 individuals at three variants."""
    return pd.DataFrame(
        {
            "position": [1] * 4 + [2] * 4 + [3] * 4,
            "sample_id": ["A", "B", "C", "D"] * 3,
            "genotype": [0, 1, 2, 2, 0, 0, 0, 1, 2, 2, 2, 2],
            "trait": [1.0, 2.1, 2.9, 3.2] * 3,
        }
    )


@pytest.fixture
def make_table():
    """Factory for custom long-format tables (see make_long_table)."""
    return make_long_table
