import logging
import secrets
import string
from typing import Callable

logger = logging.getLogger("giftcard-ledger.codes")

ALPHABET = string.ascii_uppercase + string.digits


class CodeGenerator:
    """Builds ``<prefix><random suffix>`` codes, checked against existing cards.

    Collision checking is best effort: after ``max_attempts`` draws the last
    candidate is returned anyway and the store's unique constraint decides.
    """

    def __init__(
        self,
        exists: Callable[[str], bool],
        prefix: str = "GC-",
        length: int = 16,
        max_attempts: int = 5,
    ):
        self.exists = exists
        self.prefix = prefix.upper()
        self.length = length
        self.max_attempts = max_attempts

    def _draw(self) -> str:
        suffix = "".join(secrets.choice(ALPHABET) for _ in range(self.length))
        return f"{self.prefix}{suffix}"

    def generate(self) -> str:
        attempts = 0
        while True:
            code = self._draw()
            attempts += 1
            if not self.exists(code):
                return code
            if attempts >= self.max_attempts:
                logger.warning("Code collision checks exhausted after %d attempts", attempts)
                return code
