import random
import re

from autoshop.tokens import generate_reference_token


class StuckRandom:
    """Always draws the same character, so every candidate is identical."""

    def __init__(self):
        self.draws = 0

    def choice(self, seq):
        self.draws += 1
        return seq[0]


def test_token_is_eight_uppercase_alphanumerics():
    token = generate_reference_token(set())
    assert re.fullmatch(r"[A-Z0-9]{8}", token)


def test_token_avoids_existing_tokens():
    rng = random.Random(7)
    first = generate_reference_token(set(), rng=random.Random(7))
    token = generate_reference_token({first}, rng=rng)
    assert token != first


def test_gives_up_after_hundred_collisions_and_returns_last_candidate():
    rng = StuckRandom()
    token = generate_reference_token({"AAAAAAAA"}, rng=rng)
    assert token == "AAAAAAAA"
    assert rng.draws == 100 * 8


def test_many_tokens_are_distinct():
    taken = set()
    for _ in range(500):
        taken.add(generate_reference_token(taken))
    assert len(taken) == 500
