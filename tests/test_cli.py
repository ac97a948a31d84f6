import json

import pytest

torch = pytest.importorskip("torch")

from contrail_rf import cli
from contrail_rf.exceptions import WorkerError

from conftest import write_simulation_tables, write_twostream, write_uvspec


@pytest.fixture()
def config_file(tmp_path, config_mapping: dict):
    path = tmp_path / "run.json"
    path.write_text(json.dumps(config_mapping), encoding="utf-8")
    return path


def test_missing_config_is_io_error(tmp_path) -> None:
    assert cli.main(["simulate", "-c", str(tmp_path / "absent.json")]) == cli.EXIT_IO


def test_invalid_config_is_config_error(tmp_path, config_mapping: dict) -> None:
    config_mapping["common"]["num_photons"] = 0
    path = tmp_path / "run.json"
    path.write_text(json.dumps(config_mapping), encoding="utf-8")
    assert cli.main(["simulate", "-c", str(path)]) == cli.EXIT_CONFIG


def test_simulate_then_refuse_overwrite(tmp_path, config_file) -> None:
    out = tmp_path / "out"
    args = ["simulate", "-c", str(config_file), "-p", "solar", "-o", str(out), "-t", "3", "-m"]
    assert cli.main(args) == cli.EXIT_OK
    assert (out / "run_solar_diffuse_0.50.csv").exists()
    assert (out / "run_solar_direct_0.50.csv").exists()
    assert not (out / "run_terrestrial_diffuse_0.50.csv").exists()

    assert cli.main(args) == cli.EXIT_IO
    assert cli.main(args + ["-f"]) == cli.EXIT_OK


def test_worker_failure_exit_code(monkeypatch, config_file, tmp_path) -> None:
    def fail(self, part):
        raise WorkerError("direction 3 failed", index=3)

    monkeypatch.setattr(cli.SimulationRunner, "run", fail)
    assert cli.main(["simulate", "-c", str(config_file), "-o", str(tmp_path)]) == cli.EXIT_WORKER


def test_forcing_end_to_end(tmp_path, config_file) -> None:
    out = tmp_path / "out"
    assert cli.main(["simulate", "-c", str(config_file), "-o", str(out), "--random-mode", "shared"]) == cli.EXIT_OK
    uvspec = write_uvspec(tmp_path / "uvspec.out", [500.0])
    twostream = write_twostream(tmp_path / "twostream.out", [500.0])

    code = cli.main(["forcing", "-d", str(out), "-u", str(uvspec), "-t", str(twostream)])
    assert code == cli.EXIT_OK
    lines = (out / "radiative_forcing.csv").read_text(encoding="utf-8").splitlines()
    assert lines[-1].split(", ")[1] == "total"


def test_forcing_missing_wavelength_is_data_error(tmp_path) -> None:
    write_simulation_tables(tmp_path, "run", 0.7, 1)
    uvspec = write_uvspec(tmp_path / "uvspec.out", [500.0])
    twostream = write_twostream(tmp_path / "twostream.out", [500.0])
    code = cli.main(["forcing", "-d", str(tmp_path), "-u", str(uvspec), "-t", str(twostream)])
    assert code == cli.EXIT_PHYSICS


def test_forcing_count_mismatch_is_config_error(tmp_path) -> None:
    direct, _, _ = write_simulation_tables(tmp_path, "run", 0.5, 1)
    direct.rename(tmp_path / "elsewhere.txt")
    uvspec = write_uvspec(tmp_path / "uvspec.out", [500.0])
    twostream = write_twostream(tmp_path / "twostream.out", [500.0])
    code = cli.main(["forcing", "-d", str(tmp_path), "-u", str(uvspec), "-t", str(twostream)])
    assert code == cli.EXIT_CONFIG
