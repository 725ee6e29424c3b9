# config.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path

LOG_DIR = Path(__file__).parent / "logs"
LOG_FILE = LOG_DIR / "session.jsonl"
APP_NAME = "Pico Loader"

DEFAULT_BAUD = 115200
# размер приёмного буфера загрузчика, больше за один кадр не влезает
MAX_CHUNK = 4096


@dataclass(frozen=True)
class LoaderSettings:
    """Тайм-ауты и лимиты одной сессии прошивки (все конечные)."""

    chunk_size: int = MAX_CHUNK
    read_timeout: float = 5.0       # ожидание ответа на один кадр, сек
    chunk_retries: int = 3          # повторов на блок после первой попытки
    hello_attempts: int = 5         # попыток найти загрузчик
    reacquire_timeout: float = 10.0  # ожидание повторного появления порта
    reboot_timeout: float = 10.0    # ожидание готовности загрузчика
    backoff_initial: float = 0.1
    backoff_factor: float = 2.0
    backoff_max: float = 2.0

    def __post_init__(self):
        if not (0 < self.chunk_size <= MAX_CHUNK):
            raise ValueError(f"chunk_size must be 1..{MAX_CHUNK}")
        if self.chunk_retries < 0:
            raise ValueError("chunk_retries must be >= 0")
        if self.hello_attempts < 1:
            raise ValueError("hello_attempts must be >= 1")
