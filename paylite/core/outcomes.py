import random
from typing import List, Optional, Tuple

from paylite.core.lifecycle import TERMINAL_STATUSES, SUCCESS, PENDING, FAILED

DEFAULT_WEIGHTS: List[Tuple[str, int]] = [(SUCCESS, 3), (PENDING, 1), (FAILED, 1)]


def parse_weights(raw: str) -> List[Tuple[str, int]]:
    """
    Parse "success:3,pending:1,failed:1" into [(status, weight), ...].
    Falls back to the default weights when the value is empty.
    Raises ValueError on unknown statuses or non-positive totals.
    """
    if not (raw or "").strip():
        return list(DEFAULT_WEIGHTS)
    out: List[Tuple[str, int]] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        status, _, weight = part.partition(":")
        status = status.strip().lower()
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Unknown terminal status in OUTCOME_WEIGHTS: {status!r}")
        w = int(weight.strip() or "0")
        if w < 0:
            raise ValueError(f"Negative weight for {status!r}")
        out.append((status, w))
    if sum(w for _, w in out) <= 0:
        raise ValueError("OUTCOME_WEIGHTS must have a positive total")
    return out


def make_rng(seed: Optional[str] = None) -> random.Random:
    if seed is None or str(seed).strip() == "":
        return random.Random()
    return random.Random(int(seed))


def draw_outcome(rng: random.Random, weights: Optional[List[Tuple[str, int]]] = None) -> str:
    """Weighted draw of a terminal status."""
    weights = weights or DEFAULT_WEIGHTS
    statuses = [s for s, _ in weights]
    return rng.choices(statuses, weights=[w for _, w in weights], k=1)[0]
