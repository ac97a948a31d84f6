import pytest

torch = pytest.importorskip("torch")

from contrail_rf.direction import DirectionResult
from contrail_rf.exceptions import TableFormatError
from contrail_rf.tables import (
    DIFFUSE_TABLE,
    DIRECT_TABLE,
    DirectionTableWriter,
    TableWriter,
    bin_columns,
    read_table,
)


def _result(theta: float, phi: float) -> DirectionResult:
    return DirectionResult(
        theta=theta,
        phi=phi,
        num_photons=10,
        correction_factor=0.125,
        num_absorbed=2,
        num_transmitted=3,
        num_scattered=5,
        num_scattered_up=4,
        num_scattered_down=1,
        average_scattered=1.4,
        bins=[4, 1],
    )


def test_bin_columns() -> None:
    assert bin_columns(60) == ["S_60", "S_120", "S_180"]


def test_diffuse_table_written_and_parsed(tmp_path) -> None:
    path = tmp_path / "run_solar_diffuse_0.50.csv"
    with DirectionTableWriter(path, {"num_photons": 10, "lambda": 0.5, "bins_phi": 1}, resolution_s=90) as writer:
        writer.write_row(_result(0.7853981633974483, 3.141592653589793))
        writer.write_row(_result(2.356194490192345, 3.141592653589793))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "// num_photons = 10"
    assert lines[3] == "//" + DIFFUSE_TABLE
    assert lines[4].split()[-2:] == ["S_90", "S_180"]

    table = read_table(path)
    assert table.name == DIFFUSE_TABLE
    assert len(table) == 2
    assert table.parameter("lambda") == 0.5
    assert table.parameter("num_photons") == 10
    assert table.column("theta")[1] == 2.356194490192345
    assert table.column("num_scattered_up").tolist() == [4.0, 4.0]
    assert table.column("num_affected").tolist() == [7.0, 7.0]
    assert table.column("S_90").tolist() == [0.5, 0.5]


def test_direct_table_has_no_bins(tmp_path) -> None:
    path = tmp_path / "direct.csv"
    with DirectionTableWriter(path, {"sza": 0.5}, resolution_s=10, direct=True) as writer:
        writer.write_row(_result(0.5, 1.0))

    table = read_table(path)
    assert table.name == DIRECT_TABLE
    assert table.columns[:2] == ["sza", "phi0"]
    assert not any(column.startswith("S_") for column in table.columns)


def test_missing_column_and_parameter(tmp_path) -> None:
    path = tmp_path / "t.csv"
    with TableWriter(path, "X", ["a", "b"]) as writer:
        writer.write_values([1, 2.5])
    table = read_table(path)
    with pytest.raises(TableFormatError):
        table.column("c")
    with pytest.raises(TableFormatError):
        table.parameter("lambda")


def test_malformed_rows_rejected(tmp_path) -> None:
    path = tmp_path / "bad.csv"
    path.write_text("//X\na b\n1 2 3\n", encoding="utf-8")
    with pytest.raises(TableFormatError):
        read_table(path)

    empty = tmp_path / "empty.csv"
    empty.write_text("// lambda = 0.5\n", encoding="utf-8")
    with pytest.raises(TableFormatError):
        read_table(empty)


def test_writer_checks_row_width(tmp_path) -> None:
    with TableWriter(tmp_path / "w.csv", "X", ["a", "b"]) as writer:
        with pytest.raises(TableFormatError):
            writer.write_values([1])


def test_failed_write_leaves_no_table(tmp_path) -> None:
    path = tmp_path / "run_terrestrial_diffuse_0.50.csv"
    with pytest.raises(RuntimeError, match="direction 2"):
        with DirectionTableWriter(path, {"num_photons": 10}, resolution_s=90) as writer:
            writer.write_row(_result(0.7853981633974483, 3.141592653589793))
            assert writer.partial_path.exists()
            assert not path.exists()
            raise RuntimeError("direction 2 failed")

    assert not path.exists()
    assert not writer.partial_path.exists()


def test_failed_rewrite_keeps_previous_table(tmp_path) -> None:
    path = tmp_path / "t.csv"
    with TableWriter(path, "X", ["a", "b"]) as writer:
        writer.write_values([1, 2])
    before = path.read_bytes()

    with pytest.raises(TableFormatError):
        with TableWriter(path, "X", ["a", "b"]) as writer:
            writer.write_values([3])

    assert path.read_bytes() == before
    assert list(tmp_path.iterdir()) == [path]
