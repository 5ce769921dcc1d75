"""Board engine: pure evaluation of a 9-cell tic-tac-toe grid.

Cells hold ``None`` when empty, otherwise the role that marked them.
"""

from typing import List, Optional

from .errors import IllegalMove

FIRST = 'first'
SECOND = 'second'
ROLES = (FIRST, SECOND)

ONGOING = 'ongoing'
DRAW = 'draw'

FIRST_WINS = 'first_wins'
SECOND_WINS = 'second_wins'

CELL_COUNT = 9

LINES = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),  # rows
    (0, 3, 6), (1, 4, 7), (2, 5, 8),  # columns
    (0, 4, 8), (2, 4, 6),  # diagonals
)

Board = List[Optional[str]]


def new_board() -> Board:
    return [None] * CELL_COUNT


def other_role(role: str) -> str:
    return SECOND if role == FIRST else FIRST


def apply_move(board: Board, cell_index, role: str) -> Board:
    """Return a copy of ``board`` with ``role`` placed at ``cell_index``."""
    if role not in ROLES:
        raise IllegalMove(f'Unknown role {role!r}')
    if isinstance(cell_index, bool) or not isinstance(cell_index, int):
        raise IllegalMove('Cell index must be an integer')
    if not 0 <= cell_index < CELL_COUNT:
        raise IllegalMove(f'Cell {cell_index} is off the board')
    if board[cell_index] is not None:
        raise IllegalMove(f'Cell {cell_index} is already taken')
    updated = list(board)
    updated[cell_index] = role
    return updated


def evaluate(board: Board) -> str:
    """Return the winning role, ``DRAW`` or ``ONGOING``."""
    for a, b, c in LINES:
        if board[a] is not None and board[a] == board[b] == board[c]:
            return board[a]
    if all(cell is not None for cell in board):
        return DRAW
    return ONGOING


def result_for(outcome: str) -> Optional[str]:
    """Map an ``evaluate`` outcome to a session result, or None if ongoing."""
    if outcome == FIRST:
        return FIRST_WINS
    if outcome == SECOND:
        return SECOND_WINS
    if outcome == DRAW:
        return DRAW
    return None
