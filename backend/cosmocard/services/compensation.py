"""
Compensating actions for multi-step operations across Drive and Sheets.

Each external side effect registers how to undo itself. If a later step
fails, `unwind` runs the undo actions newest first. An undo that fails is
logged and skipped so the remaining ones still run; the original error is
what reaches the caller.
"""

import logging
from typing import Awaitable, Callable, List, Tuple

logger = logging.getLogger(__name__)

UndoAction = Callable[[], Awaitable[None]]


class CompensationLog:
    def __init__(self, operation: str):
        self.operation = operation
        self._actions: List[Tuple[str, UndoAction]] = []

    def push(self, description: str, action: UndoAction) -> None:
        self._actions.append((description, action))

    def clear(self) -> None:
        self._actions.clear()

    async def unwind(self) -> List[str]:
        """Run undo actions in reverse order; returns descriptions of those that failed."""
        failed = []
        while self._actions:
            description, action = self._actions.pop()
            try:
                await action()
                logger.info("[%s] compensated: %s", self.operation, description)
            except Exception as e:
                failed.append(description)
                logger.error(
                    "[%s] compensation failed (%s): %s", self.operation, description, e,
                    exc_info=True,
                )
        return failed

    def __len__(self) -> int:
        return len(self._actions)
