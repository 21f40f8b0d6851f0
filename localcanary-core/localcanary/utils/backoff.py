import random
import time

from pydantic import Field
from pydantic.dataclasses import dataclass


@dataclass
class ExponentialBackoff:
    """
    ExponentialBackoff implements exponential backoff with randomization.
    The backoff period increases exponentially for each retry attempt, with
    optional randomization within a defined range.

    next_backoff() is calculated using the following formula:
        ```
        randomized_interval = random_between(retry_interval * (1 - randomization_factor), retry_interval * (1 + randomization_factor))
        ```

    Note:
        - `max_interval` caps the base interval, not the randomized value
        - Returns 0 when `max_retries` or `max_time_elapsed` is exceeded
        - The implementation is not thread-safe, use one instance per caller
    """

    initial_interval: float = Field(0.05, title="Initial backoff interval in seconds", gt=0)
    randomization_factor: float = Field(0.5, title="Factor to randomize backoff", ge=0, le=1)
    multiplier: float = Field(2.0, title="Multiply interval by this factor each retry", gt=1)
    max_interval: float = Field(5.0, title="Maximum backoff interval in seconds", gt=0)
    max_retries: int = Field(5, title="Max retry attempts (-1 for unlimited)", ge=-1)
    max_time_elapsed: float = Field(-1, title="Max total time in seconds (-1 for unlimited)", ge=-1)

    def __post_init__(self):
        self.retry_interval: float = 0
        self.retries: int = 0
        self.start_time: float = 0.0

    @property
    def elapsed_duration(self) -> float:
        return max(time.monotonic() - self.start_time, 0)

    def reset(self) -> None:
        self.retry_interval = 0
        self.retries = 0
        self.start_time = 0

    def next_backoff(self) -> float:
        if self.retry_interval == 0:
            self.retry_interval = self.initial_interval
            self.start_time = time.monotonic()

        self.retries += 1

        # return 0 when max_retries is set and exceeded
        if self.max_retries >= 0 and self.retries > self.max_retries:
            return 0

        # return 0 when max_time_elapsed is set and exceeded
        if self.max_time_elapsed > 0 and self.elapsed_duration > self.max_time_elapsed:
            return 0

        next_interval = self.retry_interval
        if 0 < self.randomization_factor <= 1:
            min_interval = self.retry_interval * (1 - self.randomization_factor)
            max_interval = self.retry_interval * (1 + self.randomization_factor)
            # NOTE: the jittered value can exceed the max_interval
            next_interval = random.uniform(min_interval, max_interval)

        # do not allow the next retry interval to exceed max_interval
        self.retry_interval = min(self.max_interval, self.retry_interval * self.multiplier)

        return next_interval
