import functools
import time
from dataclasses import dataclass


@dataclass
class Stats:
    """
    Bookkeeping for a xuckoo hash table

    nbuckets counts splits (every split creates exactly one bucket), so a fresh table reports 0.
    time is CPU time in seconds spent inside insert and lookup.
    """

    nbuckets: int = 0
    nkeys: int = 0
    time: float = 0.0

    def record_split(self) -> None:
        self.nbuckets += 1

    def record_insertion(self) -> None:
        self.nkeys += 1

    def record_time(self, seconds: float) -> None:
        self.time += seconds


def timed(method):
    """
    Accumulate the CPU time spent in ``method`` into ``self.stats``

    The owner opts out by setting ``track_time`` to False.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if not self.track_time:
            return method(self, *args, **kwargs)
        start = time.process_time()
        try:
            return method(self, *args, **kwargs)
        finally:
            self.stats.record_time(time.process_time() - start)

    return wrapper
