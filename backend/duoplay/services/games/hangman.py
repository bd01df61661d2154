import copy
import string

from duoplay.errors import IllegalMove
from duoplay.models import GameKind
from .base import GameRules, MoveOutcome, other_seat

# (word, hint)
DEFAULT_WORDS = (
    ('PINEAPPLE', 'Tropical fruit with a crown'),
    ('BANANA', 'Curved yellow fruit'),
    ('STRAWBERRY', 'Small red fruit with seeds outside'),
    ('WATERMELON', 'Green outside, red inside'),
    ('SCHOOL', 'A place for learning'),
    ('COMPUTER', 'Electronic machine that processes data'),
    ('FOOTBALL', 'Popular sport played with a ball'),
    ('FOREST', 'Area covered with trees'),
    ('ELEPHANT', 'Large animal with a trunk'),
    ('GIRAFFE', 'Animal with a long neck'),
    ('FRIENDSHIP', 'Bond of affection between people'),
    ('COURAGE', 'The ability to face fear'),
    ('FREEDOM', 'Acting by your own will'),
    ('TELEVISION', 'Device for watching shows'),
    ('INTERNET', 'Global network of computers'),
    ('CINEMA', 'Place to watch films'),
    ('HISTORY', 'Study of the human past'),
    ('GEOGRAPHY', 'Study of the Earth'),
    ('PURPLE', 'Between red and blue'),
    ('YELLOW', 'Color of the sun'),
)

# Characters shown from the start and never guessed
FREE_CHARACTERS = {' ', '-'}


def word_revealed(word, guessed) -> bool:
    return all(ch in guessed or ch in FREE_CHARACTERS for ch in word)


class HangmanRules(GameRules):
    """Both players guess one shared word, alternating after every guess.

    Misses are counted per player. Reaching ``max_errors`` loses the game
    for that player; revealing the last hidden letter wins it.
    """

    kind = GameKind.HANGMAN

    def __init__(self, words=DEFAULT_WORDS, max_errors=6):
        if not words:
            raise ValueError('Hangman needs at least one word')
        self.words = tuple(words)
        self.max_errors = max_errors

    def initialize_payload(self, seat1_id, seat2_id, rng):
        word, hint = rng.choice(self.words)
        return {
            'word': word.upper(),
            'hint': hint,
            'guessed_letters': [],
            'errors': {seat1_id: 0, seat2_id: 0},
            'max_errors': self.max_errors,
        }

    def apply_move(self, payload, actor_id, seats, move, now):
        letter = self.require(move, 'letter')
        if not isinstance(letter, str) or len(letter.strip()) != 1:
            raise IllegalMove('Guess exactly one letter')
        letter = letter.strip().upper()
        if letter not in string.ascii_uppercase:
            raise IllegalMove(f'{letter!r} is not a letter')
        if letter in payload['guessed_letters']:
            raise IllegalMove(f'{letter} was already guessed')

        new_payload = copy.deepcopy(payload)
        new_payload['guessed_letters'].append(letter)
        opponent = other_seat(seats, actor_id)

        if letter not in payload['word']:
            errors = new_payload['errors']
            errors[actor_id] = errors.get(actor_id, 0) + 1
            if errors[actor_id] >= payload.get('max_errors', self.max_errors):
                return MoveOutcome(new_payload, opponent, terminal=True, winner_id=opponent)
        elif word_revealed(payload['word'], new_payload['guessed_letters']):
            return MoveOutcome(new_payload, actor_id, terminal=True, winner_id=actor_id)

        # Turn passes on every guess, hit or miss
        return MoveOutcome(new_payload, opponent)

    def rematch_first_actor(self, finished, seat1_id, seat2_id):
        # The loser of the previous game starts the rematch
        if finished.winner_id:
            loser = finished.opponent_of(finished.winner_id)
            if loser in (seat1_id, seat2_id):
                return loser
        return seat1_id
