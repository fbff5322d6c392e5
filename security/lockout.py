from collections import namedtuple
from datetime import timedelta

LockoutLevel = namedtuple("LockoutLevel", ["level", "attempts", "duration"])

# (attempts, minutes) for levels 1..4
DEFAULT_LOCKOUT_LEVELS = [(5, 5), (8, 15), (12, 60), (20, 24 * 60)]


def build_levels(pairs) -> list[LockoutLevel]:
    """
    Turns configured (attempts, minutes) pairs into an ordered level table.
    Attempt thresholds and durations must both be strictly increasing.
    """
    pairs = list(pairs or DEFAULT_LOCKOUT_LEVELS)
    if not 1 <= len(pairs) <= 4:
        raise ValueError("lockout table must have between 1 and 4 levels")

    levels = []
    for i, (attempts, minutes) in enumerate(pairs, start=1):
        if levels and (attempts <= levels[-1].attempts or timedelta(minutes=minutes) <= levels[-1].duration):
            raise ValueError("lockout levels must escalate in both attempts and duration")
        levels.append(LockoutLevel(level=i, attempts=int(attempts), duration=timedelta(minutes=minutes)))
    return levels


def level_for_attempts(attempts: int, levels) -> LockoutLevel:
    """
    Highest level whose threshold is met. Counts below the first threshold
    (stricter admin limits) still get level 1.
    """
    chosen = levels[0]
    for lvl in levels:
        if attempts >= lvl.attempts:
            chosen = lvl
    return chosen
