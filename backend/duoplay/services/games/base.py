from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from duoplay.errors import IllegalMove


@dataclass(frozen=True)
class MoveOutcome:
    payload: Dict[str, Any]
    next_actor: str
    terminal: bool = False
    winner_id: Optional[str] = None


def other_seat(seats: Tuple[str, str], player_id: str) -> str:
    return seats[1] if player_id == seats[0] else seats[0]


class GameRules:
    """Capability interface each mini-game supplies to the session core.

    Implementations are pure: they never mutate the payload they are given
    and never touch the store. The core writes the returned payload, actor
    and terminal state in one update.
    """

    kind = None

    def initialize_payload(self, seat1_id, seat2_id, rng) -> Dict[str, Any]:
        raise NotImplementedError

    def apply_move(self, payload, actor_id, seats, move, now) -> MoveOutcome:
        raise NotImplementedError

    def settle(self, payload, now) -> Optional[Dict[str, Any]]:
        """Apply any scheduled effect that is due at ``now``.

        Returns the new payload, or None when nothing is due.
        """
        return None

    def next_deadline(self, payload) -> Optional[float]:
        """Timestamp of the next scheduled effect, if any."""
        return None

    def rematch_first_actor(self, finished, seat1_id, seat2_id) -> str:
        # Seats are swapped for a rematch, so the new seat1 starts
        return seat1_id

    @staticmethod
    def require(move, key):
        if not isinstance(move, dict) or key not in move:
            raise IllegalMove(f"Move must include '{key}'")
        return move[key]
