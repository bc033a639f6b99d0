import logging
import threading
from typing import Optional

from amqp_patterns.factory import PatternFactory
from amqp_patterns.lifecycle import LifecycleController, PausePolicy

logger = logging.getLogger(__name__)

__GLOBALS = {}
__GLOBALS_LOCK = threading.RLock()


def init_pattern_factory(
    hosts: Optional[list[str]] = None,
    shuffle_hosts: bool = False,
    pause_policy: PausePolicy = PausePolicy.STOP,
) -> PatternFactory:
    """Initialize the process wide pattern factory and its lifecycle controller."""
    with __GLOBALS_LOCK:
        if "pattern_factory" in __GLOBALS:
            return __GLOBALS["pattern_factory"]

        factory = PatternFactory(
            hosts=hosts,
            shuffle_hosts=shuffle_hosts,
            lifecycle=LifecycleController(pause_policy=pause_policy),
        )
        __GLOBALS["pattern_factory"] = factory

    logger.info(
        "pattern factory initialized with hosts %s",
        ", ".join(str(host) for host in factory.hosts),
    )
    return factory


def get_pattern_factory() -> PatternFactory:
    with __GLOBALS_LOCK:
        if __GLOBALS.get("pattern_factory") is None:
            raise RuntimeError("pattern factory not initialized - cannot start")
        return __GLOBALS["pattern_factory"]


def shutdown_pattern_factory():
    """Close the shared connection and unregister signal handlers."""
    with __GLOBALS_LOCK:
        factory: Optional[PatternFactory] = __GLOBALS.pop("pattern_factory", None)
    if factory is None:
        return
    factory.lifecycle.unregister_signals()
    factory.close()


def split_host_list(value: Optional[str]) -> list[str]:
    """Split a comma separated host list, ignoring blanks."""
    if not value:
        return []
    return [host.strip() for host in value.split(",") if host.strip()]
