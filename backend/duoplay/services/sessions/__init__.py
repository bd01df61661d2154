"""Session synchronization core.

Shared by every mini-game: the state machine (create/join), the turn
arbiter (moves), the rematch coordinator and the per-client
reconciliation logic. Transport concerns stay in the blueprints and
socket handlers.
"""

from .core import SessionCore
from .rematch import RematchResult

__all__ = ['SessionCore', 'RematchResult']
