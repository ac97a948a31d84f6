import math

import pytest

torch = pytest.importorskip("torch")

from contrail_rf.direction import DirectionAccumulator, correction_factor, direction_grid
from contrail_rf.exceptions import ContrailConfigError, ContrailPhysicsError
from contrail_rf.tracer import Absorbed, PhotonBatch, Scattered, Transmitted


def test_direction_grid_is_theta_major_and_bin_centred() -> None:
    grid = direction_grid(2, 4)
    assert len(grid) == 8
    assert grid[0] == pytest.approx((math.pi / 4, math.pi / 4))
    assert grid[1] == pytest.approx((math.pi / 4, 3 * math.pi / 4))
    assert grid[4] == pytest.approx((3 * math.pi / 4, math.pi / 4))


def test_correction_factor_uses_projected_width() -> None:
    # Incidence across the contrail sees the full diameter.
    assert correction_factor(math.pi / 2, math.pi / 2, 100.0, 1000) == pytest.approx(0.2)
    # Incidence along the axis sees none of it.
    assert correction_factor(math.pi / 2, 0.0, 100.0, 1000) == pytest.approx(0.0, abs=1e-12)


def test_accumulator_bins_and_hemispheres() -> None:
    acc = DirectionAccumulator(1.0, 2.0, 6, 45, 50.0)
    acc.add(Absorbed())
    acc.add(Transmitted())
    acc.add(Scattered(math.radians(10.0), 0.0, 1))
    acc.add(Scattered(math.radians(45.0), 0.0, 3))
    acc.add(Scattered(math.radians(100.0), 0.0, 2))
    acc.add(Scattered(math.pi, 0.0, 2))

    result = acc.result()
    assert result.num_absorbed == 1
    assert result.num_transmitted == 1
    assert result.num_scattered == 4
    assert result.num_scattered_up == 2
    assert result.num_scattered_down == 2
    assert result.bins == [2, 0, 1, 1]
    assert result.average_scattered == pytest.approx(2.0)
    assert result.num_affected == 5


def test_online_mean_matches_batch_mean() -> None:
    counts = [1, 4, 2, 7, 3, 3, 1]
    acc = DirectionAccumulator(1.0, 2.0, len(counts), 10, 50.0)
    acc.add_batch(PhotonBatch.from_outcomes([Scattered(0.5, 0.0, c) for c in counts[:3]]))
    for c in counts[3:]:
        acc.add(Scattered(2.0, 0.0, c))
    assert acc.result().average_scattered == pytest.approx(sum(counts) / len(counts))


def test_exit_theta_beyond_pi_aborts() -> None:
    acc = DirectionAccumulator(1.0, 2.0, 1, 10, 50.0)
    with pytest.raises(ContrailPhysicsError):
        acc.add(Scattered(math.pi + 0.1, 0.0, 1))


def test_accumulator_rejects_bad_resolution() -> None:
    with pytest.raises(ContrailConfigError):
        DirectionAccumulator(1.0, 2.0, 1, 7, 50.0)


def test_row_layout() -> None:
    acc = DirectionAccumulator(0.5, 1.5, 4, 90, 10.0)
    acc.add(Scattered(0.2, 0.0, 1))
    result = acc.result()

    row = result.row()
    assert row[:2] == [0.5, 1.5]
    assert len(row) == 9 + 2
    assert row[-2] == pytest.approx(result.correction_factor)
    assert len(result.row(with_bins=False)) == 9
