from typing import Protocol


class CodeTransport(Protocol):
    def send(self, phone: str, code: str) -> bool:
        ...
