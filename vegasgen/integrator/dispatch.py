# vegasgen/integrator/dispatch.py
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from vegasgen.integrator.errors import IntegrandError

# SeedSequence stream tags
STREAM_INTEGRATE = 0
STREAM_UNWEIGHT = 1
STREAM_PRESAMPLE = 2


def stream_rng(seed: int, stream: int, *keys: int) -> np.random.Generator:
    """
    Stable-per-chunk RNG keyed by (seed, stream, keys...).
    Draws depend on the chunk only, never on which thread runs it.
    """
    ss = np.random.SeedSequence([int(seed), int(stream), *[int(k) for k in keys]])
    return np.random.default_rng(ss)


def chunk_sizes(n: int, chunk: int):
    """Split n draws into ceil(n/chunk) chunks, the last one holding the remainder."""
    if n <= 0:
        return []
    n_chunks = (n + chunk - 1) // chunk
    sizes = [chunk] * n_chunks
    remainder = n - chunk * (n_chunks - 1)
    if remainder > 0:
        sizes[-1] = remainder
    return sizes


def run_ordered(func, tasks, threads: int = 1):
    """
    Apply func to every task on `threads` workers, results in task order.
    Returns once all tasks joined; the first worker exception propagates.
    """
    tasks = list(tasks)
    if threads <= 1 or len(tasks) <= 1:
        return [func(t) for t in tasks]
    with ThreadPoolExecutor(max_workers=min(threads, len(tasks))) as ex:
        return list(ex.map(func, tasks))


def evaluate_checked(integrand, point, validity) -> float:
    """Call the integrand and enforce its contract: finite, non-negative."""
    w = float(integrand.evaluate(point, validity))
    if not np.isfinite(w):
        validity.amplitude_ok = False
        return 0.0
    if w < 0.0:
        raise IntegrandError(
            f"Integrand returned a negative weight {w} at {np.asarray(point).tolist()}; "
            "weights must be >= 0."
        )
    return w
