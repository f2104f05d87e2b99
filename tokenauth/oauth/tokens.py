import secrets
from abc import ABC, abstractmethod


class TokenGenerator(ABC):
    """Source of access/refresh token strings."""

    @abstractmethod
    def generate(self) -> str:
        """Return an unpredictable, fixed-length, unique token string."""


class RandomTokenGenerator(TokenGenerator):
    """Hex tokens from the OS CSPRNG; `length` characters long."""

    def __init__(self, length: int = 64):
        if length % 2:
            raise ValueError("length must be even")
        self.length = length

    def generate(self) -> str:
        return secrets.token_hex(self.length // 2)
