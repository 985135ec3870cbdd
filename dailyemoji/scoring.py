import re
from typing import Optional


# Cost of the 1st, 2nd and 3rd hint, in milliseconds
HINT_COSTS_MS = (2000, 5000, 10000)
MAX_HINTS = len(HINT_COSTS_MS)

_NON_ALNUM = re.compile(r'[^a-z0-9]')


def hint_cost(already_revealed: int) -> Optional[int]:
    """Cost of the next hint given how many were already revealed.

    Returns None once the schedule is exhausted.
    """
    if already_revealed < 0 or already_revealed >= MAX_HINTS:
        return None
    return HINT_COSTS_MS[already_revealed]


def elapsed_ms(start_ms: int, finalize_ms: int) -> int:
    # a finalize instant before the start is clock skew, not an error
    return max(0, finalize_ms - start_ms)


def compute_score(start_ms: int, finalize_ms: int, penalty_ms: int) -> int:
    return elapsed_ms(start_ms, finalize_ms) + penalty_ms


def normalize_guess(text: str) -> str:
    return _NON_ALNUM.sub('', (text or '').lower())


def is_correct_guess(guess: str, solution: str) -> bool:
    return normalize_guess(guess) == normalize_guess(solution)
