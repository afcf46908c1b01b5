"""
win_checker.py - Four-in-a-row detection for Connect Four boards

Pure functions over a Board: a check rooted at a freshly placed disc, and a
full-board scan for positions whose last move is unknown (for example a
position loaded from outside the engine).
"""

from typing import List, Optional, Tuple

from connect4live.game.board import Board
from connect4live.utils import CONNECT_N, DIRECTION_VECTORS, ROWS, COLS, Player, is_valid_position


def count_in_direction(board: Board, row: int, col: int, player: int, dr: int, dc: int) -> int:
    """
    Count contiguous ``player`` cells through (row, col) along one axis.

    Both opposite directions are walked; the origin cell is included.
    """
    grid = board.grid
    count = 1

    r, c = row + dr, col + dc
    while is_valid_position(r, c) and grid[r, c] == player:
        count += 1
        r += dr
        c += dc

    r, c = row - dr, col - dc
    while is_valid_position(r, c) and grid[r, c] == player:
        count += 1
        r -= dr
        c -= dc

    return count


def check_win(board: Board, row: int, col: int, player: int) -> bool:
    """
    Check if the disc at (row, col) completes four in a row for player.

    Args:
        board: The board to inspect
        row: Row of the disc just placed
        col: Column of the disc just placed
        player: Player number that owns the disc

    Returns:
        True if any axis through the cell holds CONNECT_N or more of player's discs
    """
    if not is_valid_position(row, col):
        return False
    if player == Player.EMPTY.value or board.grid[row, col] != player:
        return False

    for dr, dc in DIRECTION_VECTORS.values():
        if count_in_direction(board, row, col, player, dr, dc) >= CONNECT_N:
            return True

    return False


def find_winner(board: Board) -> Optional[int]:
    """
    Re-derive the winner of a position from scratch.

    Returns:
        The winning player number, or None if nobody has four in a row
    """
    grid = board.grid
    for row in range(ROWS):
        for col in range(COLS):
            cell = int(grid[row, col])
            if cell != Player.EMPTY.value and check_win(board, row, col, cell):
                return cell
    return None


def winning_line(board: Board, row: int, col: int) -> List[Tuple[int, int]]:
    """
    Get the positions of the winning line through (row, col).

    Returns:
        List of (row, col) positions forming the line, or an empty list if no win
    """
    if not is_valid_position(row, col):
        return []

    grid = board.grid
    player = int(grid[row, col])
    if player == Player.EMPTY.value:
        return []

    for dr, dc in DIRECTION_VECTORS.values():
        positions = [(row, col)]

        r, c = row + dr, col + dc
        while is_valid_position(r, c) and grid[r, c] == player:
            positions.append((r, c))
            r += dr
            c += dc

        r, c = row - dr, col - dc
        while is_valid_position(r, c) and grid[r, c] == player:
            positions.insert(0, (r, c))
            r -= dr
            c -= dc

        if len(positions) >= CONNECT_N:
            return positions

    return []
