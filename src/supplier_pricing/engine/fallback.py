"""
Fallback Executor - Try the live supplier, fall back to stored data.

Every live-vs-cache decision goes through `FallbackExecutor.execute`:
1. Run the primary call in a worker thread with a CallContext deadline
2. Wait at most `timeout` seconds for it
3. On timeout or error, cancel the context and ask the fallback
4. If the fallback has nothing either, raise AllSourcesFailedError

The wait is bounded even if the primary never returns: the worker is
abandoned (its context is cancelled) and never retried here.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Callable, Optional, TypeVar

from .errors import AllSourcesFailedError, UpstreamError, UpstreamTimeoutError
from .models import CallContext, FallbackResult, utcnow

logger = logging.getLogger(__name__)

T = TypeVar('T')

UPSTREAM_UNAVAILABLE = "Upstream unavailable: using cached data, price may be outdated"


class FallbackExecutor:
    """Runs live calls with a bounded wait and a fallback source."""

    def __init__(self, timeout: float = 10.0, max_workers: int = 8, clock=utcnow):
        self.timeout = timeout
        self.clock = clock
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='live-price')

    def execute(
        self,
        primary: Callable[[CallContext], T],
        fallback: Callable[[], Optional[T]],
        timeout: Optional[float] = None,
        label: str = '',
        account: Optional[dict] = None,
    ) -> FallbackResult[T]:
        """
        Run `primary(context)`, falling back to `fallback()` on timeout or error.

        Returns a FallbackResult tagged "live" or "cache". Raises
        AllSourcesFailedError when the primary failed and the fallback
        returned None (or raised).
        """
        timeout = timeout if timeout is not None else self.timeout
        context = CallContext(timeout, account=account)
        future = self._pool.submit(primary, context)

        try:
            data = future.result(timeout=timeout)
            return FallbackResult(data=data, source='live', is_stale=False, cached_at=self.clock())
        except FuturesTimeout:
            context.cancel()
            future.cancel()
            failure = UpstreamTimeoutError(f"Live call {label} exceeded {timeout:.1f}s")
            logger.warning("Live call %s timed out after %.1fs, falling back", label, timeout)
        except Exception as exc:
            context.cancel()
            failure = exc if isinstance(exc, UpstreamError) else UpstreamError(str(exc))
            logger.warning("Live call %s failed (%s), falling back", label, exc)

        try:
            data = fallback()
        except Exception:
            logger.warning("Fallback for %s raised", label, exc_info=True)
            data = None

        if data is None:
            logger.error("All price sources failed for %s", label)
            raise AllSourcesFailedError(
                f"No price available for {label}: live call failed and nothing is cached"
            ) from failure

        return FallbackResult(
            data=data,
            source='cache',
            is_stale=True,
            cached_at=getattr(data, 'cached_at', None),
            warning=UPSTREAM_UNAVAILABLE,
        )

    def shutdown(self):
        """Stop accepting work; abandoned calls are not waited for."""
        self._pool.shutdown(wait=False, cancel_futures=True)
