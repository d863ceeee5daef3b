"""
Error taxonomy.

Admission rejections are plain return values (see beacon.admission) and never
show up here. BeaconError covers recoverable problems and boot failures;
InvariantViolation means in-memory state can no longer be trusted and the
process has to go down.
"""
import logging
import os

log = logging.getLogger(__name__)


class BeaconError(Exception):
    pass


class ConfigError(BeaconError):
    """Configuration or stored state is unusable; raised at boot only."""


class InvariantViolation(Exception):
    pass


class MemoryCorruptionError(InvariantViolation):
    pass


class FutureHeartbeatError(InvariantViolation):
    pass


def fatal(exc):
    """Log an invariant violation and terminate the process immediately.

    A wrong "alive" answer is worse than downtime, so nothing is flushed or
    cleaned up; the supervisor (docker, systemd) is expected to restart us.
    """
    log.critical("invariant violated, aborting: %s", exc)
    logging.shutdown()
    os._exit(1)
