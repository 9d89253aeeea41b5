from pybreaker import CircuitBreaker

from .config import get_settings

_settings = get_settings()

# Guards notification delivery (database channel).
notification_circuit_breaker = CircuitBreaker(
    fail_max=_settings.notification_fail_max,
    reset_timeout=_settings.notification_reset_timeout,
    name="notification_breaker",
)
