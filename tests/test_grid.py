import numpy as np
import pytest

from feel.xrf.grid import Grid, load_map, parse_rows


def test_grid_dimensions():
    grid = Grid(np.zeros((3, 7)))
    assert grid.width == 7
    assert grid.height == 3
    assert grid.shape == (3, 7)


def test_grid_row_major_lookup():
    grid = Grid.from_rows([[1, 2, 3], [4, 5, 6]])
    assert grid.value(2, 0) == 3.0
    assert grid.value(0, 1) == 4.0


def test_grid_out_of_range_lookup():
    grid = Grid(np.ones((2, 2)))
    assert grid.value(2, 0) is None
    assert grid.value(-1, 0) is None
    assert not grid.contains(0, 2)


def test_grid_is_read_only_copy():
    src = np.ones((2, 2))
    grid = Grid(src)
    src[0, 0] = 99
    assert grid.value(0, 0) == 1.0
    with pytest.raises(ValueError):
        grid.values[0, 0] = 5.0


def test_grid_rejects_non_2d():
    with pytest.raises(ValueError, match="2D"):
        Grid(np.zeros(4))
    with pytest.raises(ValueError, match="non-empty"):
        Grid(np.zeros((0, 3)))


def test_grid_identity_equality():
    a = Grid(np.ones((2, 2)))
    b = Grid(np.ones((2, 2)))
    assert a == a
    assert a != b


def test_parse_rows_semicolon():
    arr, bad = parse_rows(["1;2;3\n", "4;5;6\n"])
    assert bad == 0
    np.testing.assert_array_equal(arr, [[1, 2, 3], [4, 5, 6]])


def test_parse_rows_bad_cells_are_zero():
    arr, bad = parse_rows(["1;x;3", "4;;6"])
    assert bad == 2
    np.testing.assert_array_equal(arr, [[1, 0, 3], [4, 0, 6]])


def test_parse_rows_ragged_and_blank_lines():
    arr, bad = parse_rows(["1;2;3", "", "4"])
    assert bad == 0
    np.testing.assert_array_equal(arr, [[1, 2, 3], [4, 0, 0]])


def test_parse_rows_other_delimiter():
    arr, _ = parse_rows(["1,2", "3,4"], delimiter=",")
    assert arr.shape == (2, 2)


def test_parse_rows_empty():
    with pytest.raises(ValueError, match="no rows"):
        parse_rows(["", "  "])


def test_load_map(tmp_path):
    path = tmp_path / "map.txt"
    path.write_text("10;20;30\n40;50;60\n", encoding="utf-8")
    grid = load_map(path)
    assert grid.shape == (2, 3)
    assert grid.value(1, 1) == 50.0


def test_load_map_warns_on_bad_cells(tmp_path):
    path = tmp_path / "map.csv"
    path.write_text("1;abc\n2;3\n", encoding="utf-8")
    with pytest.warns(UserWarning, match="1 cell"):
        grid = load_map(str(path))
    assert grid.value(1, 0) == 0.0


def test_load_map_empty_file(tmp_path):
    path = tmp_path / "empty.txt"
    path.write_text("", encoding="utf-8")
    with pytest.raises(ValueError):
        load_map(path)


def test_load_map_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_map(tmp_path / "missing.txt")
