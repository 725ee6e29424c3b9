# firmware/map.py
from dataclasses import dataclass

@dataclass(frozen=True)
class Region:
    name: str
    start: int
    size: int

    @property
    def end(self) -> int:
        return self.start + self.size

    def contains(self, address: int, length: int = 1) -> bool:
        return self.start <= address and address + length <= self.end

# Слот приложения у Pico 2 W: загрузчик занимает начало флеша, метаданные
# слота лежат перед 0x10010100. Сырой .bin грузится ровно сюда.
APP_SLOT = Region("APP", start=0x10010100, size=2 * 1024 * 1024)
