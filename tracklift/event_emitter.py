"""Event emitter used by the upload queue to notify its observers."""

import asyncio
import logging
from typing import Any

from pyee.asyncio import AsyncIOEventEmitter

logger = logging.getLogger(__name__)


class Emitter(AsyncIOEventEmitter):
    """Event emitter owned by one upload queue."""

    # Upload manager -> observers
    QUEUE_UPDATED = "QUEUE_UPDATED"
    # (items: list[UploadItem])

    # Upload manager -> observers
    UPLOAD_PROGRESS = "UPLOAD_PROGRESS"
    # (item: UploadItem)

    def __init__(self, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize the event emitter.

        Observer exceptions are routed to the ``error`` event, logged, and do
        not stop delivery to the remaining observers.

        Args:
            loop: The event loop to use for async event handlers.
        """
        super().__init__(loop=loop)
        self.on("error", self._log_observer_error)

    @staticmethod
    def _log_observer_error(error: BaseException) -> None:
        logger.error(
            "Upload observer raised an exception",
            exc_info=(type(error), error, error.__traceback__),
        )

    def emit(self, event: str, *args: Any, **kwargs: Any) -> bool:
        """Emit an event with logging.

        Args:
            event: The event name to emit.
            *args: Positional arguments to pass to handlers.
            **kwargs: Keyword arguments to pass to handlers.

        Returns:
            True if the event had listeners, False otherwise.
        """
        if event != "error":
            formatted_args = []
            for arg in args:
                if isinstance(arg, list):
                    formatted_args.append(f"<list of {len(arg)} items>")
                else:
                    r = repr(arg)
                    if len(r) > 100:
                        formatted_args.append(f"{r[:100]}...")
                    else:
                        formatted_args.append(r)
            logger.debug("EVENT %s: %s", event, ", ".join(formatted_args))
        return super().emit(event, *args, **kwargs)
