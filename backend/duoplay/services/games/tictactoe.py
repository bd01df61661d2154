import copy

from duoplay.errors import IllegalMove
from duoplay.models import GameKind
from .base import GameRules, MoveOutcome, other_seat

WINNING_LINES = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),
    (0, 3, 6), (1, 4, 7), (2, 5, 8),
    (0, 4, 8), (2, 4, 6),
)


def has_line(board, symbol) -> bool:
    return any(all(board[i] == symbol for i in line) for line in WINNING_LINES)


class TicTacToeRules(GameRules):
    kind = GameKind.TIC_TAC_TOE

    def initialize_payload(self, seat1_id, seat2_id, rng):
        return {
            'board': [''] * 9,
            'symbols': {seat1_id: 'X', seat2_id: 'O'},
        }

    def apply_move(self, payload, actor_id, seats, move, now):
        position = self.require(move, 'position')
        if isinstance(position, bool) or not isinstance(position, int) or not 0 <= position < 9:
            raise IllegalMove(f'Position {position!r} is not on the board')
        board = list(payload['board'])
        if board[position]:
            raise IllegalMove(f'Position {position} is already taken')

        symbol = 'X' if actor_id == seats[0] else 'O'
        board[position] = symbol
        new_payload = copy.deepcopy(payload)
        new_payload['board'] = board

        if has_line(board, symbol):
            return MoveOutcome(new_payload, actor_id, terminal=True, winner_id=actor_id)
        if all(board):
            return MoveOutcome(new_payload, actor_id, terminal=True, winner_id=None)
        return MoveOutcome(new_payload, other_seat(seats, actor_id))
