"""Game rules: one small ``GameRules`` implementation per mini-game.

The session core is generic; everything game-specific (payload shape,
move validation, turn grants, rematch opener) lives here.
"""

from duoplay.models import GameKind
from .base import GameRules, MoveOutcome
from .hangman import HangmanRules
from .memory import MemoryRules
from .tictactoe import TicTacToeRules


def build_rules(config):
    """Rules registry keyed by ``GameKind``, sized from app config."""
    return {
        GameKind.HANGMAN: HangmanRules(max_errors=int(config.get('HANGMAN_MAX_ERRORS', 6))),
        GameKind.MEMORY: MemoryRules(
            rows=int(config.get('MEMORY_GRID_ROWS', 4)),
            cols=int(config.get('MEMORY_GRID_COLS', 4)),
            reset_delay_ms=int(config.get('MEMORY_RESET_DELAY_MS', 1500)),
        ),
        GameKind.TIC_TAC_TOE: TicTacToeRules(),
    }


__all__ = ['GameRules', 'MoveOutcome', 'HangmanRules', 'MemoryRules', 'TicTacToeRules', 'build_rules']
