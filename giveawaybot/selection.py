"""Winner selection."""

from __future__ import annotations

import random
import secrets
from typing import Optional, Sequence


def select_winner(
    participant_ids: Sequence[str], rng: Optional[random.Random] = None
) -> str:
    """Pick one participant uniformly at random.

    ``rng`` may be any ``random.Random`` compatible source; the default is
    ``secrets.SystemRandom``. Callers must check for an empty participant list
    beforehand, an empty sequence raises ``ValueError``.
    """
    if not participant_ids:
        raise ValueError("cannot select a winner from an empty participant list")
    source = rng if rng is not None else secrets.SystemRandom()
    return participant_ids[source.randrange(len(participant_ids))]


class WinnerSelector:
    """Holds the random source the lifecycle controller draws winners from."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng if rng is not None else secrets.SystemRandom()

    def select(self, participant_ids: Sequence[str]) -> str:
        return select_winner(participant_ids, self.rng)
