"""
Circuit Breaker Pattern Implementation.

This module provides circuit breaker protection for the engine's external
collaborators (fee classifier LLM, Invoice Ninja API) so that an outage
degrades reconciliation instead of stalling every worker iteration.

Circuit breaker states:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is down, requests fail fast without calling the service
- HALF_OPEN: Testing if service recovered, one trial request allowed

Usage:
    from shared.circuit_breaker import call_with_breaker, invoice_ninja_breaker
    import pybreaker

    try:
        invoices = await call_with_breaker(invoice_ninja_breaker, client.fetch, since)
    except pybreaker.CircuitBreakerError:
        # Circuit is OPEN - skip this poll
        return []
"""

import logging
import time
from typing import Any, Callable

import pybreaker

logger = logging.getLogger(__name__)


class CircuitBreakerLogger(pybreaker.CircuitBreakerListener):
    """Log circuit breaker state changes."""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        """Log state transitions."""
        if new_state.name == "open":
            logger.warning(
                f"Circuit breaker '{cb.name}' OPENED - "
                f"service appears down, failing fast for {cb.reset_timeout}s"
            )
        elif new_state.name == "half-open":
            logger.info(f"Circuit breaker '{cb.name}' HALF-OPEN - testing if service recovered")
        elif new_state.name == "closed":
            logger.info(f"Circuit breaker '{cb.name}' CLOSED - service recovered")


# Singleton registry of circuit breakers
_breakers: dict[str, pybreaker.CircuitBreaker] = {}
_consecutive_failures: dict[str, int] = {}
_opened_at: dict[str, float] = {}
_logger_instance = CircuitBreakerLogger()


def get_circuit_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 30,
    exclude: list[type] | None = None,
) -> pybreaker.CircuitBreaker:
    """
    Get or create a circuit breaker for a service.

    Args:
        name: Unique identifier for the circuit breaker
        fail_max: Number of consecutive failures before opening circuit
        reset_timeout: Seconds before attempting recovery (half-open)
        exclude: Exception types that should NOT count as failures

    Returns:
        CircuitBreaker instance (singleton per name)
    """
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            name=name,
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            exclude=exclude or [],
            listeners=[_logger_instance],
        )
        _consecutive_failures[name] = 0
        logger.info(
            f"Created circuit breaker '{name}' | "
            f"fail_max={fail_max} | reset_timeout={reset_timeout}s"
        )
    return _breakers[name]


# =============================================================================
# PRE-CONFIGURED CIRCUIT BREAKERS FOR EXTERNAL SERVICES
# =============================================================================

# OpenRouter fee classifier - optional fallback, fails closed to "unknown"
# - 3 failures before opening (every call is already a fallback path)
# - 120 second reset (no user is waiting on the answer)
fee_classifier_breaker = get_circuit_breaker(
    name="fee_classifier",
    fail_max=3,
    reset_timeout=120,
)

# Invoice Ninja API - polled every few minutes
# - 3 failures before opening
# - 300 second reset (one poll interval)
invoice_ninja_breaker = get_circuit_breaker(
    name="invoice_ninja",
    fail_max=3,
    reset_timeout=300,
)


def _record_failure(breaker: pybreaker.CircuitBreaker) -> None:
    count = _consecutive_failures.get(breaker.name, 0) + 1
    _consecutive_failures[breaker.name] = count
    if breaker.current_state == pybreaker.STATE_HALF_OPEN or count >= breaker.fail_max:
        breaker.open()
        _opened_at[breaker.name] = time.monotonic()


def _record_success(breaker: pybreaker.CircuitBreaker) -> None:
    _consecutive_failures[breaker.name] = 0
    if breaker.current_state != pybreaker.STATE_CLOSED:
        breaker.close()


async def call_with_breaker(
    breaker: pybreaker.CircuitBreaker,
    func: Callable,
    *args,
    **kwargs,
) -> Any:
    """
    Call async function with circuit breaker protection (native asyncio).

    pybreaker's call_async() requires Tornado, so consecutive failures are
    tracked here and the breaker is driven through its public open(),
    half_open() and close() transitions.

    Args:
        breaker: CircuitBreaker instance to use
        func: Async function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result from func

    Raises:
        pybreaker.CircuitBreakerError: If circuit is open
        Exception: Any exception raised by func
    """
    if breaker.current_state == pybreaker.STATE_OPEN:
        opened_at = _opened_at.get(breaker.name, 0.0)
        if time.monotonic() - opened_at < breaker.reset_timeout:
            logger.warning(f"Circuit breaker '{breaker.name}' is OPEN, failing fast")
            raise pybreaker.CircuitBreakerError(breaker)
        breaker.half_open()

    try:
        result = await func(*args, **kwargs)
    except Exception as e:
        if breaker.is_system_error(e):
            logger.warning(
                f"Circuit breaker '{breaker.name}' recorded failure: "
                f"{type(e).__name__}: {e}"
            )
            _record_failure(breaker)
        raise

    _record_success(breaker)
    return result


def reset_breakers() -> None:
    """Close every registered breaker and clear failure counters."""
    for name, breaker in _breakers.items():
        _consecutive_failures[name] = 0
        _opened_at.pop(name, None)
        if breaker.current_state != pybreaker.STATE_CLOSED:
            breaker.close()


def get_breaker_status() -> dict[str, dict[str, Any]]:
    """
    Get status of all circuit breakers for monitoring/health checks.

    Returns:
        Dict of {name: {state, consecutive_failures, reset_timeout}}
    """
    return {
        name: {
            "state": breaker.current_state,
            "consecutive_failures": _consecutive_failures.get(name, 0),
            "reset_timeout": breaker.reset_timeout,
        }
        for name, breaker in _breakers.items()
    }
