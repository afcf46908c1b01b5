import numpy as np
import pytest

from connect4live.errors import InvalidMove
from connect4live.game.board import Board
from connect4live.utils import COLS, ROWS


def test_new_board_is_empty():
    board = Board()
    assert board.disc_count() == 0
    assert board.legal_columns() == list(range(COLS))
    assert not board.is_full()


def test_discs_stack_from_the_bottom():
    board = Board().place(3, 1).place(3, 2)
    assert board.cell(ROWS - 1, 3) == 1
    assert board.cell(ROWS - 2, 3) == 2
    assert board.top_row(3) == ROWS - 2
    assert board.landing_row(3) == ROWS - 3


def test_place_returns_new_board():
    board = Board()
    after = board.place(0, 1)
    assert board.disc_count() == 0
    assert after.disc_count() == 1


def test_grid_is_read_only():
    board = Board()
    with pytest.raises(ValueError):
        board.grid[0, 0] = 1


def test_column_holds_exactly_six_discs():
    board = Board()
    for i in range(ROWS):
        board = board.place(2, 1 + i % 2)
    assert not board.is_legal(2)
    assert 2 not in board.legal_columns()
    with pytest.raises(InvalidMove):
        board.place(2, 1)


@pytest.mark.parametrize("column", [-1, COLS, 99, "3", 2.5, True, None])
def test_out_of_range_or_non_integer_columns_are_illegal(column):
    board = Board()
    assert not board.is_legal(column)
    with pytest.raises(InvalidMove):
        board.place(column, 1)


def test_numpy_integer_column_is_accepted():
    board = Board().place(np.int64(4), 1)
    assert board.cell(ROWS - 1, 4) == 1


def test_full_board():
    rows = [[1 + ((r // 2 + c) % 2) for c in range(COLS)] for r in range(ROWS)]
    board = Board.from_rows(rows)
    assert board.is_full()
    assert board.legal_columns() == []


def test_from_rows_rejects_floating_disc():
    rows = [[0] * COLS for _ in range(ROWS)]
    rows[2][1] = 1
    with pytest.raises(ValueError):
        Board.from_rows(rows)


def test_from_rows_rejects_bad_shape_and_values():
    with pytest.raises(ValueError):
        Board.from_rows([[0] * COLS] * (ROWS - 1))
    rows = [[0] * COLS for _ in range(ROWS)]
    rows[ROWS - 1][0] = 3
    with pytest.raises(ValueError):
        Board.from_rows(rows)


def test_cell_out_of_bounds():
    with pytest.raises(IndexError):
        Board().cell(ROWS, 0)


def test_equality_and_hash_follow_contents():
    a = Board().place(1, 1)
    b = Board().place(1, 1)
    assert a == b
    assert hash(a) == hash(b)
    assert a != Board()


def test_to_rows_is_row_major_top_first():
    rows = Board().place(0, 2).to_rows()
    assert len(rows) == ROWS and len(rows[0]) == COLS
    assert rows[ROWS - 1][0] == 2
    assert rows[0][0] == 0
