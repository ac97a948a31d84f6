import pytest

torch = pytest.importorskip("torch")

import numpy as np

from contrail_rf.config import RadiationPart, config_from_mapping
from contrail_rf.direction import DirectionTask
from contrail_rf.exceptions import ContrailConfigError, WorkerError
from contrail_rf.optics import PhysicalParameterModel, TabulatedOptics, prepare_parameters
from contrail_rf.simulation import SimulationRunner, output_name
from contrail_rf.tables import read_table


def _optics(part: RadiationPart) -> PhysicalParameterModel:
    shape = (1, 2, 2)
    lookup = TabulatedOptics(
        wavelengths=[0.55, 10.5],
        d_max=[10.0, 100.0],
        q_abs=np.full(shape, 0.2),
        q_sca=np.full(shape, 1.8),
        g=np.array([[[0.7, 0.8], [0.9, 0.9]]]),
    )
    return PhysicalParameterModel(part, lookup)


def test_output_name() -> None:
    assert output_name("run", "_solar_diffuse", 0.5) == "run_solar_diffuse_0.50.csv"
    assert output_name("run", "_terrestrial_diffuse", None) == "run_terrestrial_diffuse.csv"


def test_optical_model_resolves_band(config_mapping: dict) -> None:
    for key in ("g", "absorption_factor", "scattering_factor", "lambda"):
        config_mapping["solar_diffuse"].pop(key)
    config_mapping["solar_diffuse"]["spectral_band_index"] = 0
    config = config_from_mapping(config_mapping)

    model = _optics(RadiationPart.SOLAR)
    params = prepare_parameters(config.solar_diffuse, RadiationPart.SOLAR, model)
    # radius 10 um means a maximum dimension of 20 um.
    assert params.g == pytest.approx(0.7 + 0.1 * 10.0 / 90.0)
    assert params.absorption_factor == pytest.approx(0.2)
    assert params.wavelength == pytest.approx(0.55)
    assert model.calc_q_ext(20.0, 0) == pytest.approx(2.0)

    with pytest.raises(ContrailConfigError):
        prepare_parameters(config.solar_diffuse, RadiationPart.SOLAR)
    with pytest.raises(ContrailConfigError):
        prepare_parameters(config.solar_diffuse, RadiationPart.SOLAR, _optics(RadiationPart.TERRESTRIAL))


def test_terrestrial_part_drops_shear(config_mapping: dict) -> None:
    config_mapping["terrestrial_diffuse"]["sigma_s"] = 100.0
    config = config_from_mapping(config_mapping)
    params = prepare_parameters(config.terrestrial_diffuse, RadiationPart.TERRESTRIAL)
    assert params.sigma_s == 0.0


def test_runner_writes_all_parts(tmp_path, config_mapping: dict) -> None:
    config = config_from_mapping(config_mapping)
    runner = SimulationRunner(config, output_dir=tmp_path, write_metrics=True)
    metrics = runner.run("both")

    assert set(metrics) == {"solar_diffuse", "solar_direct", "terrestrial_diffuse"}
    diffuse = read_table(tmp_path / "run_solar_diffuse_0.50.csv")
    direct = read_table(tmp_path / "run_solar_direct_0.50.csv")
    assert len(diffuse) == 4
    assert len(direct) == 1
    assert direct.parameter("sza") == pytest.approx(config.solar_direct.sza)
    assert diffuse.parameter("num_photons") == 200
    assert (tmp_path / "run_terrestrial_diffuse_0.50.csv").exists()
    assert len(list(tmp_path.glob("200_2_2_*.txt"))) == 1


def test_runner_refuses_to_overwrite(tmp_path, config_mapping: dict) -> None:
    config = config_from_mapping(config_mapping)
    SimulationRunner(config, output_dir=tmp_path).run(RadiationPart.TERRESTRIAL)
    with pytest.raises(FileExistsError):
        SimulationRunner(config, output_dir=tmp_path).run(RadiationPart.TERRESTRIAL)
    SimulationRunner(config, output_dir=tmp_path, overwrite=True).run(RadiationPart.TERRESTRIAL)


def test_failed_run_leaves_no_table(tmp_path, config_mapping: dict, monkeypatch) -> None:
    config = config_from_mapping(config_mapping)
    run = DirectionTask.run

    def fail_third_direction(self, source):
        if self.index == 2:
            raise RuntimeError("tracer failed")
        return run(self, source)

    monkeypatch.setattr(DirectionTask, "run", fail_third_direction)
    with pytest.raises(WorkerError) as excinfo:
        SimulationRunner(config, output_dir=tmp_path).run(RadiationPart.TERRESTRIAL)
    assert excinfo.value.index == 2
    assert list(tmp_path.iterdir()) == []

    monkeypatch.undo()
    SimulationRunner(config, output_dir=tmp_path).run(RadiationPart.TERRESTRIAL)
    assert len(read_table(tmp_path / "run_terrestrial_diffuse_0.50.csv")) == 4


def test_runner_is_reproducible_with_per_task_seed(tmp_path, config_mapping: dict) -> None:
    config = config_from_mapping(config_mapping)
    SimulationRunner(config, output_dir=tmp_path / "a").run("terrestrial")
    SimulationRunner(config, output_dir=tmp_path / "b").run("terrestrial")
    first = read_table(tmp_path / "a" / "run_terrestrial_diffuse_0.50.csv")
    second = read_table(tmp_path / "b" / "run_terrestrial_diffuse_0.50.csv")
    assert np.array_equal(first.values, second.values)


def test_unknown_part_rejected(tmp_path, config_mapping: dict) -> None:
    runner = SimulationRunner(config_from_mapping(config_mapping), output_dir=tmp_path)
    with pytest.raises(ContrailConfigError):
        runner.run("infrared")
