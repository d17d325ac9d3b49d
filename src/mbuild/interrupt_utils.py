"""Keyboard interrupt handling for worker threads.

A KeyboardInterrupt raised inside a worker thread does not reach the main
thread on its own. Worker code catches it and calls
handle_keyboard_interrupt_properly(), which forwards the interrupt to the main
thread and re-raises it so the worker unwinds as well.
"""

import _thread
import logging
from typing import NoReturn

logger = logging.getLogger(__name__)


def handle_keyboard_interrupt_properly(ke: KeyboardInterrupt) -> NoReturn:
    """Forward a KeyboardInterrupt to the main thread and re-raise it.

    Args:
        ke: The interrupt caught by the caller

    Raises:
        KeyboardInterrupt: Always
    """
    logger.debug("KeyboardInterrupt caught, interrupting main thread")
    _thread.interrupt_main()
    raise ke
