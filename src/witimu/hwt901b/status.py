from __future__ import annotations

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class StatusReporter:
    """
    Status sink shared by every device runtime.

    Keeps the last message so the host can query it, and forwards to optional
    host callbacks (e.g. a plugin status API).
    """

    def __init__(
        self,
        on_status: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self._on_status = on_status
        self._on_error = on_error
        self.message: Optional[str] = None

    def set_status(self, msg: str) -> None:
        self.message = msg
        logger.info(msg)
        if self._on_status is not None:
            self._on_status(msg)

    def set_error(self, msg: str) -> None:
        self.message = f"error: {msg}"
        logger.warning(msg)
        if self._on_error is not None:
            self._on_error(msg)
