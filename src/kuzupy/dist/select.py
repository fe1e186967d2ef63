import logging
import random
from typing import Optional

from kuzupy.dist.registry import Registry
from kuzupy.ds import Worker
from kuzupy.errors import NoAvailableWorker, PollTimeout
from kuzupy.poll import Backoff

logger = logging.getLogger(__name__)


def available_worker(
    registry: Registry, concurrency: int, backoff: Optional[Backoff] = None, rng: Optional[random.Random] = None
) -> Worker:
    """A random one among the connected workers with the fewest active tasks, all of them below `concurrency`. If
    there is none, polls the registry with exponential backoff and raises NoAvailableWorker once that runs out."""
    backoff = backoff or Backoff()
    try:
        candidates = backoff.poll(lambda: registry.available_workers(concurrency), bool, "no available worker found")
    except PollTimeout as e:
        raise NoAvailableWorker("no available worker found", e.waited_ms) from e
    # min keeps the first of equals, so shuffling first breaks ties at random
    (rng or random).shuffle(candidates)
    chosen = min(candidates, key=lambda w: w.active_tasks)
    logger.debug(f"selected worker {chosen.name} with {chosen.active_tasks} active tasks")
    return chosen
