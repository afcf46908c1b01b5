import random

import pytest

from connect4live.ai.minimax import BotPlayer
from connect4live.errors import SessionOver
from connect4live.game.board import Board
from connect4live.game.rules import RulesEngine
from connect4live.utils import COLS, ROWS


def engine_after(moves):
    """Engine after alternating moves starting with player 1."""
    engine = RulesEngine()
    for column in moves:
        engine.apply_move(column)
    return engine


def engine_from_cells(ones, twos, to_move):
    rows = [[0] * COLS for _ in range(ROWS)]
    for r, c in ones:
        rows[r][c] = 1
    for r, c in twos:
        rows[r][c] = 2
    return RulesEngine(Board.from_rows(rows), to_move)


def test_takes_horizontal_win():
    engine = engine_after([0, 0, 1, 1, 2, 2])
    assert BotPlayer(1, depth=4).choose_column(engine) == 3


def test_takes_vertical_win():
    engine = engine_after([6, 0, 6, 1, 6, 0])
    bot = BotPlayer(1, depth=4)
    assert bot.choose_column(engine) == 6


def test_takes_diagonal_up_win():
    # Player 2 needs (2, 3) to finish (5,0) (4,1) (3,2) (2,3)
    engine = engine_from_cells(
        ones=[(5, 1), (5, 2), (4, 2), (5, 3), (4, 3), (3, 3), (5, 6)],
        twos=[(5, 0), (4, 1), (3, 2), (5, 4), (5, 5), (4, 4)],
        to_move=2,
    )
    assert BotPlayer(2, depth=4).choose_column(engine) == 3


def test_takes_diagonal_down_win():
    # Player 2 needs (5, 6) to finish (2,3) (3,4) (4,5) (5,6)
    engine = engine_from_cells(
        ones=[(5, 3), (4, 3), (5, 4), (5, 5), (5, 0), (5, 1), (3, 3)],
        twos=[(2, 3), (3, 4), (4, 4), (4, 5), (4, 0), (4, 1)],
        to_move=2,
    )
    assert BotPlayer(2, depth=4).choose_column(engine) == 6


def test_blocks_opponent_win():
    # Player 1 threatens row 5 columns 1-3 with both ends open; bot blocks one end
    engine = engine_after([1, 6, 2, 6, 3])
    column = BotPlayer(2, depth=4).choose_column(engine)
    assert column in (0, 4)


def test_blocks_vertical_threat():
    engine = engine_after([2, 0, 2, 6, 2])
    assert BotPlayer(2, depth=4).choose_column(engine) == 2


def test_prefers_own_win_over_block():
    engine = engine_after([0, 6, 0, 6, 0, 6])
    assert BotPlayer(1, depth=4).choose_column(engine) == 0


def test_only_chooses_legal_columns_on_crowded_board():
    rng = random.Random(3)
    engine = RulesEngine()
    while not engine.is_over:
        bot = BotPlayer(engine.current_player, depth=2, rng=rng)
        column = bot.choose_column(engine)
        assert engine.board.is_legal(column)
        engine.apply_move(column)


def test_refuses_finished_game():
    engine = engine_after([0, 1, 0, 1, 0, 1, 0])
    with pytest.raises(SessionOver):
        BotPlayer(2).choose_column(engine)


def test_falls_back_to_random_legal_column(monkeypatch):
    bot = BotPlayer(1, depth=2, rng=random.Random(0))

    def explode(engine):
        raise RuntimeError("search exploded")

    monkeypatch.setattr(bot, "_select_column", explode)
    engine = engine_after([3])
    assert engine.board.is_legal(bot.choose_column(engine))


def test_does_not_modify_the_engine():
    engine = engine_after([3, 3, 2])
    board = engine.board
    BotPlayer(2, depth=3).choose_column(engine)
    assert engine.board == board
    assert engine.current_player == 2


def test_opening_prefers_center():
    assert BotPlayer(1, depth=2).choose_column(RulesEngine()) == 3


def test_evaluate_is_symmetric_between_players():
    board = engine_after([3, 2, 3]).board
    assert BotPlayer(1).evaluate(board) > 0
    assert BotPlayer(2).evaluate(board) < 0


def test_invalid_player():
    with pytest.raises(ValueError):
        BotPlayer(0)


def test_creates_double_threat():
    # Playing (5, 4) leaves open ends at columns 1 and 5 on the bottom row
    engine = engine_from_cells(ones=[(5, 2), (5, 3)], twos=[(4, 2), (4, 3)], to_move=1)
    assert BotPlayer(1, depth=2).choose_column(engine) == 4


def test_occupies_opponent_fork_square():
    engine = engine_from_cells(ones=[(5, 2), (5, 3)], twos=[(4, 2), (4, 3)], to_move=2)
    assert BotPlayer(2, depth=2).choose_column(engine) == 4


def test_failing_heuristic_skips_column_and_still_searches(monkeypatch):
    bot = BotPlayer(1, depth=2, rng=random.Random(0))
    searched = []
    search_root = bot._search_root

    def broken_fork_check(engine, column, player):
        raise RuntimeError("fork check failed")

    def recording_search(engine, candidates):
        searched.append(list(candidates))
        return search_root(engine, candidates)

    monkeypatch.setattr(bot, "_creates_fork", broken_fork_check)
    monkeypatch.setattr(bot, "_search_root", recording_search)

    assert bot.choose_column(RulesEngine()) == 3
    assert searched and sorted(searched[0]) == list(range(COLS))
