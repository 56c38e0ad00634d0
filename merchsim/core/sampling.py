"""Uniform index sampling over the user dataset."""

from __future__ import annotations

from random import Random

from merchsim.exceptions import InvariantError


def random_index(n: int, rng: Random) -> int:
    """Draw a uniform index from ``[0, n-1]``."""
    if n < 1:
        raise InvariantError("EMPTY_RANGE", "cannot draw an index from an empty range", {"n": n})
    return rng.randint(0, n - 1)


def sample_excluding(n: int, exclude: int, rng: Random) -> int:
    """Draw a uniform index from ``[0, n-1]`` that is never ``exclude``.

    One draw from ``[0, n-2]``, shifted up by one at or past ``exclude``;
    there is no rejection loop. A negative ``exclude`` means no exclusion
    and the draw covers the full ``[0, n-1]`` range.
    """
    if n < 2:
        raise InvariantError(
            "EXCLUSION_TOO_FEW_CANDIDATES",
            "cannot exclude one index from fewer than two candidates",
            {"n": n, "exclude": exclude},
        )
    if exclude >= n:
        raise InvariantError(
            "EXCLUSION_OUT_OF_RANGE",
            "excluded index is outside the sampled range",
            {"n": n, "exclude": exclude},
        )

    if exclude < 0:
        return rng.randint(0, n - 1)

    i = rng.randint(0, n - 2)
    if i >= exclude:
        i += 1
    return i
