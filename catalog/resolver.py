"""
Fallback fetch resolver

Tries an ordered list of transport strategies against one upstream target and
returns the first payload that parses into the target's declared shape.
"""
import time
from typing import List, Optional, Sequence

import structlog

from .errors import AllStrategiesExhausted, ShapeViolation, TransportFailure
from .fetcher import HTTPFetcher
from .models import Resolution, StrategyReport, UpstreamTarget
from .strategies import ProxyStrategy

logger = structlog.get_logger(__name__)


class FallbackResolver:
    def __init__(self, fetcher: HTTPFetcher, attempt_timeout: float = 10.0, query_timeout: Optional[float] = None):
        self.fetcher = fetcher
        self.attempt_timeout = attempt_timeout
        self.query_timeout = query_timeout

    def check_budget(self, strategy_count: int, chain: str = 'default') -> bool:
        """Warn when the worst case chain outlives the query timeout."""
        if self.query_timeout is None:
            return True
        worst_case = strategy_count * self.attempt_timeout
        if worst_case > self.query_timeout:
            logger.warning("query_timeout_below_worst_case",
                           chain=chain,
                           strategies=strategy_count,
                           attempt_timeout=self.attempt_timeout,
                           query_timeout=self.query_timeout)
            return False
        return True

    async def resolve(self, target: UpstreamTarget, strategies: Sequence[ProxyStrategy]) -> Resolution:
        """Return the first strategy's parsed payload; raise AllStrategiesExhausted otherwise."""
        deadline = None if self.query_timeout is None else time.monotonic() + self.query_timeout
        attempted = []
        last_error = "no strategies configured"

        for strategy in strategies:
            timeout = self.attempt_timeout
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    reason = f"query timeout of {self.query_timeout}s reached"
                    last_error = f"{reason} after: {last_error}" if attempted else reason
                    break
                timeout = min(timeout, remaining)

            attempted.append(strategy.name)
            try:
                payload = await self._attempt(target, strategy, timeout)
            except (TransportFailure, ShapeViolation) as e:
                logger.warning("strategy_failed", strategy=strategy.name, url=target.url, error=str(e))
                last_error = str(e)
                continue

            logger.info("strategy_succeeded", strategy=strategy.name, url=target.url, attempted=attempted)
            return Resolution(payload=payload, strategy=strategy.name, attempted=attempted)

        logger.error("all_strategies_exhausted", url=target.url, attempted=attempted, last_error=last_error)
        raise AllStrategiesExhausted(last_error, attempted)

    async def _attempt(self, target: UpstreamTarget, strategy: ProxyStrategy, timeout: float):
        request = strategy.build_request(target)
        logger.debug("strategy_attempt", strategy=strategy.name, relay_url=request.url, timeout=timeout)

        result = await self.fetcher.fetch(request.url, headers=request.headers, timeout=timeout)
        if not result.success:
            raise TransportFailure(strategy.name, result.error or f"HTTP {result.status_code}")

        try:
            body = strategy.unwrap_response(result.text)
            return target.parser.parse(body)
        except ShapeViolation as e:
            if e.strategy is None:
                raise ShapeViolation(str(e), strategy.name) from e
            raise

    async def diagnose(self, target: UpstreamTarget, strategies: Sequence[ProxyStrategy]) -> List[StrategyReport]:
        """Try every strategy once without stopping at the first success."""
        reports = []
        for strategy in strategies:
            request = strategy.build_request(target)
            result = await self.fetcher.fetch(request.url, headers=request.headers, timeout=self.attempt_timeout)

            error = result.error
            items = None
            if result.success:
                try:
                    items = len(target.parser.parse(strategy.unwrap_response(result.text)))
                except ShapeViolation as e:
                    error = str(e)

            reports.append(StrategyReport(
                name=strategy.name,
                ok=error is None,
                status=result.status_code,
                error=error,
                elapsed=round(result.fetch_time, 3),
                final_url=result.final_url,
                items=items,
            ))
            logger.info("strategy_diagnosed", strategy=strategy.name, ok=error is None,
                        status=result.status_code, elapsed=result.fetch_time)
        return reports
