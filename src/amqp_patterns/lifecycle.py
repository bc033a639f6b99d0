"""
Process lifecycle control for consuming loops.

One LifecycleController is shared by every delivery session of a process. It
holds the running state that the sessions poll between deliveries. Process
signals only flip that state, they never touch a delivery in progress, so an
interrupted session always lets its current callback finish before exiting.

Signal mapping:
    SIGTERM, SIGINT -> interrupt
    SIGTSTP         -> pause
    SIGHUP          -> resume
"""

import enum
import logging
import signal
import threading
from typing import Callable, Optional, Sequence

from amqp_patterns.exceptions import CapabilityError

logger = logging.getLogger(__name__)

INTERRUPT_SIGNALS = ("SIGTERM", "SIGINT")
PAUSE_SIGNALS = ("SIGTSTP",)
RESUME_SIGNALS = ("SIGHUP",)


class LifecycleState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    INTERRUPTED = "interrupted"
    PAUSED = "paused"


class PausePolicy(enum.Enum):
    # pause is an interrupt, the loop drains and exits
    STOP = "stop"
    # the loop stops taking deliveries and waits for resume or interrupt
    SUSPEND = "suspend"


class LifecycleController:
    """
    Cooperative running state shared by consuming loops.

    State changes are plain attribute assignments so they are safe to make
    from a signal handler.
    """

    def __init__(
        self,
        pause_policy: PausePolicy = PausePolicy.STOP,
        interrupt_signals: Sequence[str] = INTERRUPT_SIGNALS,
        pause_signals: Sequence[str] = PAUSE_SIGNALS,
        resume_signals: Sequence[str] = RESUME_SIGNALS,
    ) -> None:
        self._pause_policy = PausePolicy(pause_policy)
        self._interrupt_signals = tuple(interrupt_signals)
        self._pause_signals = tuple(pause_signals)
        self._resume_signals = tuple(resume_signals)

        self._state = LifecycleState.IDLE
        self._original_handlers: dict[signal.Signals, object] = {}

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def pause_policy(self) -> PausePolicy:
        return self._pause_policy

    @property
    def is_running(self) -> bool:
        return self._state is LifecycleState.RUNNING

    @property
    def is_paused(self) -> bool:
        return self._state is LifecycleState.PAUSED

    @property
    def signals_registered(self) -> bool:
        return bool(self._original_handlers)

    def start(self) -> None:
        """
        Called by a session before it starts consuming. Only an idle
        controller moves to running, an interrupt received during startup stays.
        """
        if self._state is LifecycleState.IDLE:
            self._state = LifecycleState.RUNNING

    def finish(self) -> None:
        """Called by a session leaving its loop."""
        self._state = LifecycleState.IDLE

    def interrupt(self) -> None:
        """Ask the loop to exit once the current delivery is done."""
        if self._state is LifecycleState.IDLE:
            return
        self._state = LifecycleState.INTERRUPTED

    def pause(self) -> None:
        if self._state is LifecycleState.IDLE:
            return
        if self._pause_policy is PausePolicy.STOP:
            self._state = LifecycleState.INTERRUPTED
        else:
            self._state = LifecycleState.PAUSED

    def resume(self) -> None:
        """
        Go back to consuming. Only the local wait restarts, the broker
        connection is left as is.
        """
        if self._state in (LifecycleState.INTERRUPTED, LifecycleState.PAUSED):
            self._state = LifecycleState.RUNNING

    def _make_handler(
        self, transition: Callable[[], None], hook: Optional[Callable[[], None]]
    ):
        def handler(signum, frame):
            logger.info("Received %s", signal.Signals(signum).name)
            transition()
            if hook is not None:
                hook()

        return handler

    def register_signals(
        self,
        on_interrupt: Optional[Callable[[], None]] = None,
        on_pause: Optional[Callable[[], None]] = None,
        on_resume: Optional[Callable[[], None]] = None,
    ) -> "LifecycleController":
        """
        Install the process signal handlers.

        :param on_interrupt: Called after the state changed on an interrupt signal.
        :param on_pause: Called after the state changed on a pause signal.
        :param on_resume: Called after the state changed on a resume signal.
        :raises CapabilityError: If a signal does not exist on this platform or
            handlers cannot be installed from the calling thread.
        """
        if self.signals_registered:
            logger.warning("Signal handlers already registered")
            return self

        if threading.current_thread() is not threading.main_thread():
            raise CapabilityError(
                ", ".join(self._interrupt_signals),
                "Signal handlers can only be registered from the main thread",
            )

        plan = []
        for names, transition, hook in (
            (self._interrupt_signals, self.interrupt, on_interrupt),
            (self._pause_signals, self.pause, on_pause),
            (self._resume_signals, self.resume, on_resume),
        ):
            for name in names:
                signum = getattr(signal, name, None)
                if signum is None:
                    raise CapabilityError(name)
                plan.append((signum, self._make_handler(transition, hook)))

        for signum, handler in plan:
            try:
                self._original_handlers[signum] = signal.signal(signum, handler)
            except (OSError, ValueError) as e:
                self.unregister_signals()
                raise CapabilityError(signal.Signals(signum).name, str(e)) from e
            logger.debug("Registered signal handler for %s", signal.Signals(signum).name)

        logger.info("Lifecycle signal handlers registered")
        return self

    def unregister_signals(self) -> None:
        """Restore the handlers that were installed before register_signals."""
        for signum, original in self._original_handlers.items():
            try:
                # None means the handler was not installed from Python
                signal.signal(signum, original if original is not None else signal.SIG_DFL)
            except (OSError, ValueError) as e:
                logger.exception("Failed to restore handler for %s: %s", signum, e)
        self._original_handlers.clear()
