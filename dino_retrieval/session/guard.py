from __future__ import annotations


class GenerationGuard:
    """Strictly increasing counter used to recognise stale async responses.

    Each request takes a token from :meth:`issue` before it suspends, and
    applies its response only if :meth:`is_current` still holds for that token
    once it resumes. Issuing a new token silently supersedes all earlier ones.
    """

    def __init__(self) -> None:
        self._latest = 0

    @property
    def latest(self) -> int:
        return self._latest

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, token: int) -> bool:
        return token == self._latest
