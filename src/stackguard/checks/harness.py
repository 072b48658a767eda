"""Single-check execution under a timeout.

:func:`run_check` is the only place where probes are invoked.  It
never raises: exceptions and timeouts are both folded into an
ordinary probe failure, which is then classified by the check's
criticality.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, TypeVar

from .models import Check, CheckResult, Outcome, ProbeResult, ProbeReturn

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _interpret(value: ProbeReturn) -> Tuple[bool, Optional[str]]:
    """Normalise a probe return into ``(ok, detail)``."""
    if isinstance(value, ProbeResult):
        return value.ok, value.detail
    if value is None:
        return True, None
    return bool(value), None


def classify(ok: bool, critical: bool) -> Outcome:
    """PASS on success; a failure is FAIL when critical, else WARN."""
    if ok:
        return Outcome.PASS
    if not critical:
        return Outcome.WARN
    return Outcome.FAIL


def run_check(check: Check, category: str = "") -> CheckResult:
    """Execute one check and classify the outcome.

    The probe runs on a single-use worker thread and is raced against
    ``check.timeout``.  On expiry the worker is abandoned (its eventual
    result is never observed) and the check counts as failed.

    Args:
        check: The check to run.
        category: Category name, used only for logging.

    Returns:
        A :class:`CheckResult`; this function does not raise.
    """
    started = time.monotonic()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="probe")
    try:
        future = executor.submit(check.probe)
        value = future.result(timeout=check.timeout)
        ok, detail = _interpret(value)
    except FuturesTimeout:
        ok, detail = False, f"timed out after {check.timeout:g}s"
    except Exception as exc:  # probes may raise anything; it is a failure
        ok, detail = False, str(exc) or exc.__class__.__name__
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    outcome = classify(ok, check.critical)
    duration = round(time.monotonic() - started, 3)
    logger.info(
        "%s: %s",
        check.name,
        outcome.value,
        extra={
            "event": "check",
            "category": category,
            "check": check.name,
            "outcome": outcome.value,
            "duration": duration,
        },
    )
    return CheckResult(
        name=check.name,
        outcome=outcome,
        critical=check.critical,
        duration=duration,
        detail=detail,
    )


def _succeeded(value: object) -> bool:
    if isinstance(value, ProbeResult):
        return value.ok
    return value is None or bool(value)


@dataclass
class RetryPolicy:
    """Bounded retry with a fixed delay, owned by the probe that needs it.

    ``run(fn)`` calls ``fn`` up to ``attempts`` times, sleeping
    ``delay`` seconds between attempts, and returns the first
    successful result.  When every attempt fails the last result is
    returned, or the last exception re-raised.
    """

    attempts: int = 3
    delay: float = 1.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def run(self, fn: Callable[[], T]) -> T:
        last_exc: Optional[BaseException] = None
        result: Optional[T] = None
        for attempt in range(max(self.attempts, 1)):
            if attempt:
                self.sleep(self.delay)
            try:
                result = fn()
            except Exception as exc:
                last_exc = exc
                continue
            last_exc = None
            if _succeeded(result):
                return result
        if last_exc is not None:
            raise last_exc
        return result  # type: ignore[return-value]


__all__ = ["run_check", "classify", "RetryPolicy"]
