"""
=============================================================================
SIGNAL HANDLING FOR GRACEFUL SHUTDOWN
=============================================================================

SIGINT (2):   Sent when the user presses Ctrl+C
SIGTERM (15): Sent by docker stop, systemd stop, kill <pid>

The server core never touches process-wide signal state. An application
that wants Ctrl+C to stop the listener opts in here:

    server = RCONServer(...)
    restore = close_on_signals(server)
    try:
        server.listen_and_serve()
    finally:
        restore()

Python only allows signal.signal() from the main thread, so call this
from the thread that runs the program.

=============================================================================
"""

import signal
import logging
from typing import Callable, Iterable, Protocol


logger = logging.getLogger(__name__)


DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Closable(Protocol):
    def shutdown(self) -> None: ...


def close_on_signals(
    server: Closable,
    signals: Iterable[signal.Signals] = DEFAULT_SIGNALS,
) -> Callable[[], None]:
    """
    Shut the server down when one of `signals` arrives.

    Args:
        server: Anything with a shutdown() method, normally an RCONServer.
        signals: Signals to catch. Defaults to SIGINT and SIGTERM.

    Returns:
        A function that reinstalls the handlers that were in place before.
    """
    def shutdown_handler(signum, frame):
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, initiating shutdown...")
        server.shutdown()

    original_handlers = {}
    for sig in signals:
        original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def restore():
        for sig, handler in original_handlers.items():
            # None means the previous handler was not installed from Python
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
        original_handlers.clear()

    return restore
