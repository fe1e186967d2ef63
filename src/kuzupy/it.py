"""
Module contents:
    - chunks -- `chunks([1,2,3,4,5], 2) -> [[1, 2], [3, 4], [5]]`, each chunk materialised since it is shipped to a worker,
    - flatmap -- concatenates per-chunk results back together, lazily,
    - consume -- head and rest of an iterator, splits the submitted chunks at the head-start window.

Everything except the chunks themselves is lazy, no unneeded list allocations are happening.
"""
from itertools import chain, islice
from typing import Callable, Iterable, Iterator, Optional, TypeVar

from kuzupy.errors import InvalidArgument

TA = TypeVar("TA")
TB = TypeVar("TB")


def chunks(s: Iterable[TA], n: int) -> Iterator[list[TA]]:
    """Consecutive chunks of at most `n` elements, last one possibly shorter. Never yields an empty chunk."""
    if n < 1:
        raise InvalidArgument(f"chunk size must be positive, got {n}")
    it = iter(s)
    while True:
        chunk = list(islice(it, n))
        if not chunk:
            return
        yield chunk


def flatmap(f: Callable[[TA], Iterable[TB]], xs: Iterable[TA]) -> Iterator[TB]:
    """Applies `f` to one element at a time, only when the previous result is exhausted."""
    return chain.from_iterable(map(f, xs))


def consume(it: Iterator[TA], n: Optional[int]) -> tuple[list[TA], Iterator[TA]]:
    """Splits off a head of at most `n` elements, all of them if `n` is None, and leaves the rest untouched."""
    if n is None:
        return list(it), iter(())
    return list(islice(it, max(n, 0))), it
