"""Suppression of watcher echoes caused by the engine's own writes."""

import logging
import os
from collections import Counter
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Union

logger = logging.getLogger(__name__)


class SuppressionSet:
    """Paths whose next watcher notification is expected and must be ignored.

    Whenever the engine creates, writes, moves or removes a path it
    registers it here first. The watcher adapter consumes each
    registration exactly once, so a later user edit of the same path is
    reported normally.

    A watcher that reports changes in rounds wraps each round in
    :meth:`batch`. Registrations made before the round are answered by it;
    any that the round did not report (a write that left size and mtime
    unchanged, for instance) expire when it ends instead of swallowing a
    later user change.
    """

    def __init__(self) -> None:
        self._pending: Counter[str] = Counter()
        self._answering: Counter[str] = Counter()

    @staticmethod
    def _key(path: Union[str, Path]) -> str:
        return os.path.normcase(os.path.abspath(path))

    def __len__(self) -> int:
        return sum(self._pending.values()) + sum(self._answering.values())

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        key = self._key(path)
        return self._answering[key] > 0 or self._pending[key] > 0

    def expect(self, *paths: Union[str, Path]) -> None:
        """Register paths whose next notification should be swallowed."""
        for path in paths:
            self._pending[self._key(path)] += 1

    def expect_all(self, paths: Iterable[Union[str, Path]]) -> None:
        self.expect(*paths)

    def consume(self, path: Union[str, Path]) -> bool:
        """Consume one registration for a path.

        Returns:
            True if the notification was expected and should be ignored
        """
        key = self._key(path)
        for counter in (self._answering, self._pending):
            if counter[key] > 0:
                counter[key] -= 1
                if counter[key] == 0:
                    del counter[key]
                logger.debug(f"Suppressed watcher echo: {path}")
                return True
        return False

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Scope one round of watcher notifications.

        Registrations made while the round runs wait for the next one.
        """
        self._answering = self._pending
        self._pending = Counter()
        try:
            yield
        finally:
            unreported = sum(self._answering.values())
            if unreported:
                logger.debug(f"Expired {unreported} unreported registration(s)")
            self._answering = Counter()

    def clear(self) -> None:
        self._pending.clear()
        self._answering.clear()
