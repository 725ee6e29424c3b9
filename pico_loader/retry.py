# retry.py
from __future__ import annotations
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, TypeVar

T = TypeVar("T")


@dataclass
class RetryState:
    """Счётчик повторов одного блока: сколько было, сколько можно, почему."""

    limit: int
    count: int = 0
    last_error: Optional[str] = None

    @property
    def exhausted(self) -> bool:
        return self.count >= self.limit

    def record(self, reason: str) -> None:
        self.count += 1
        self.last_error = reason


@dataclass(frozen=True)
class Backoff:
    initial: float = 0.1
    factor: float = 2.0
    maximum: float = 2.0

    def delays(self) -> Iterator[float]:
        delay = self.initial
        while True:
            yield delay
            delay = min(delay * self.factor, self.maximum)


def poll(
    attempt: Callable[[], Optional[T]],
    backoff: Backoff,
    *,
    attempts: Optional[int] = None,
    timeout: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Optional[T]:
    """
    Вызывать attempt() до первого не-None результата.
    Ограничение — число попыток и/или дедлайн; хотя бы одно обязательно.
    Между попытками пауза растёт по backoff. None — так и не дождались.
    """
    if attempts is None and timeout is None:
        raise ValueError("poll needs attempts or timeout")
    deadline = None if timeout is None else clock() + timeout
    delays = backoff.delays()
    n = 0
    while True:
        result = attempt()
        n += 1
        if result is not None:
            return result
        if attempts is not None and n >= attempts:
            return None
        delay = next(delays)
        if deadline is not None:
            left = deadline - clock()
            if left <= 0:
                return None
            delay = min(delay, left)
        sleep(delay)
