import copy

from duoplay.errors import IllegalMove
from duoplay.models import GameKind
from .base import GameRules, MoveOutcome, other_seat

ICONS = (
    'Heart', 'Star', 'Moon', 'Sun', 'Cloud',
    'Umbrella', 'Pencil', 'Camera', 'Gift', 'Music',
    'Bell', 'Anchor', 'Airplay', 'Trees', 'Car',
    'Key', 'Lock', 'Crown', 'Diamond',
)
COLORS = (
    '#FF5733', '#33FF57', '#3357FF', '#FF33A6', '#33FFF5',
    '#F533FF', '#FF8C33', '#33FF8C', '#8C33FF', '#FFFF33',
)


class MemoryRules(GameRules):
    """Memory match on a rows x cols grid.

    A mismatched pair stays face up until ``reset_at``, a timestamp stored
    in the payload. Every reader settles against that timestamp, so a
    client that reconnects mid-delay sees the same cards as one that was
    connected throughout.
    """

    kind = GameKind.MEMORY

    def __init__(self, rows=4, cols=4, reset_delay_ms=1500):
        if (rows * cols) % 2:
            raise ValueError('Memory grid needs an even number of cards')
        self.rows = rows
        self.cols = cols
        self.reset_delay = reset_delay_ms / 1000.0

    def initialize_payload(self, seat1_id, seat2_id, rng):
        pairs = (self.rows * self.cols) // 2
        icons = list(ICONS)
        while len(icons) < pairs:
            icons.extend(ICONS)
        rng.shuffle(icons)
        faces = []
        for icon in icons[:pairs]:
            color = rng.choice(COLORS)
            faces.extend([(icon, color), (icon, color)])
        rng.shuffle(faces)
        return {
            'grid': {'rows': self.rows, 'cols': self.cols},
            'cards': [
                {'id': i, 'icon': icon, 'color': color, 'is_flipped': False, 'is_matched': False}
                for i, (icon, color) in enumerate(faces)
            ],
            'selection': [],
            'matches': [],
            'scores': {seat1_id: 0, seat2_id: 0},
            'reset_pending': False,
            'cards_to_reset': [],
            'reset_at': None,
        }

    def next_deadline(self, payload):
        return payload.get('reset_at') if payload.get('reset_pending') else None

    def settle(self, payload, now):
        if not payload.get('reset_pending') or now < (payload.get('reset_at') or 0):
            return None
        new_payload = copy.deepcopy(payload)
        for card_id in new_payload['cards_to_reset']:
            new_payload['cards'][card_id]['is_flipped'] = False
        new_payload['reset_pending'] = False
        new_payload['cards_to_reset'] = []
        new_payload['reset_at'] = None
        return new_payload

    def apply_move(self, payload, actor_id, seats, move, now):
        settled = self.settle(payload, now)
        if settled is not None:
            payload = settled
        if payload.get('reset_pending'):
            raise IllegalMove('Cards are still being turned back')

        card_id = self.require(move, 'card_id')
        cards = payload['cards']
        if isinstance(card_id, bool) or not isinstance(card_id, int) or not 0 <= card_id < len(cards):
            raise IllegalMove(f'Card {card_id!r} does not exist')
        if cards[card_id]['is_flipped'] or cards[card_id]['is_matched']:
            raise IllegalMove(f'Card {card_id} is already face up')

        new_payload = copy.deepcopy(payload)
        new_cards = new_payload['cards']
        new_cards[card_id]['is_flipped'] = True
        selection = new_payload['selection'] + [card_id]

        if len(selection) == 1:
            new_payload['selection'] = selection
            return MoveOutcome(new_payload, actor_id)

        first, second = selection
        new_payload['selection'] = []
        if new_cards[first]['icon'] == new_cards[second]['icon']:
            new_cards[first]['is_matched'] = True
            new_cards[second]['is_matched'] = True
            new_payload['matches'].append({'card_ids': [first, second], 'player_id': actor_id})
            scores = new_payload['scores']
            scores[actor_id] = scores.get(actor_id, 0) + 1
            if all(card['is_matched'] for card in new_cards):
                return MoveOutcome(new_payload, actor_id, terminal=True, winner_id=self._leader(scores, seats))
            # A matched pair keeps the turn
            return MoveOutcome(new_payload, actor_id)

        new_payload['reset_pending'] = True
        new_payload['cards_to_reset'] = [first, second]
        new_payload['reset_at'] = now + self.reset_delay
        return MoveOutcome(new_payload, other_seat(seats, actor_id))

    @staticmethod
    def _leader(scores, seats):
        first, second = (scores.get(seat, 0) for seat in seats)
        if first == second:
            return None
        return seats[0] if first > second else seats[1]
