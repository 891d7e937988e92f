"""Event system for handling time-based callbacks in the combat simulation."""

from typing import Callable, Any, Tuple, Dict

# Ordering of events that fall on the same millisecond
PRIORITY_EXPIRE = 0
PRIORITY_TICK = 1
PRIORITY_SWING = 2
PRIORITY_ACTION = 3


class Task:
    """An event in the simulation that occurs at a specific time.

    Tasks are ordered by time, then priority, then the order they were scheduled in.
    A cancelled task stays in the queue and is skipped when it comes due.
    """

    def __init__(
        self,
        time: int,
        callback: Callable,
        args: Tuple[Any, ...] = (),
        kwargs: Dict[str, Any] = None,
        priority: int = PRIORITY_ACTION,
        sequence: int = 0,
    ):
        self.time = time
        self.callback = callback
        self.args = args
        self.kwargs = kwargs or {}
        self.priority = priority
        self.sequence = sequence
        self.cancelled = False

    def sort_key(self) -> Tuple[int, int, int]:
        return self.time, self.priority, self.sequence

    def __lt__(self, other):
        return self.sort_key() < other.sort_key()

    def cancel(self):
        """Prevent the callback from running when the task comes due."""
        self.cancelled = True

    def execute(self):
        """Execute the callback function with the provided args and kwargs."""
        return self.callback(*self.args, **self.kwargs)
