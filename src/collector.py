"""
Audit Collector - concurrent PageSpeed Insights runs for one page
Fires N runPagespeed requests, keeps the runs that produced real measurements
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional

import httpx

from models import FetchFailure, FetchOutcome, FetchSuccess, Metric, MetricSet, RunRecord, Strategy

logger = logging.getLogger(__name__)

CATEGORY = "performance"


@dataclass
class CollectionResult:
    """Runs collected for one (url, strategy) pair"""

    url: str
    strategy: Strategy
    requested_runs: int
    metric_set: MetricSet
    failures: List[FetchFailure] = field(default_factory=list)

    @property
    def success_runs(self) -> int:
        return self.metric_set.run_count

    @property
    def is_complete(self) -> bool:
        return self.success_runs == self.requested_runs


def _cache_bust_token(base_ms: int, run_index: int) -> str:
    return str(base_ms + run_index)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
        return str(body.get("error", {}).get("message") or response.text[:200])
    except (ValueError, AttributeError):
        return response.text[:200]


class AuditCollector:
    """Collects PSI runs with at most max_concurrency requests in flight"""

    def __init__(self, config, token: str, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.token = token
        self.client = client
        self.endpoint = config.get_endpoint()
        self.timeout = config.get_timeout()
        self.max_concurrency = config.get_max_concurrency()
        self.cache_bust_param = config.get_cache_bust_param()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    def _build_params(self, url: str, strategy: Strategy, bust_token: str) -> dict:
        target = httpx.URL(url).copy_add_param(self.cache_bust_param, bust_token)
        return {
            "key": self.token,
            "url": str(target),
            "strategy": strategy.value,
            "category": CATEGORY,
        }

    async def _fetch_run(
        self,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        run_index: int,
        params: dict,
    ) -> FetchOutcome:
        async with semaphore:
            try:
                response = await client.get(self.endpoint, params=params, timeout=self.timeout)
            except httpx.TimeoutException as exc:
                return FetchFailure(run_index, f"Timed out after {self.timeout:.0f}s: {exc}")
            except httpx.HTTPError as exc:
                return FetchFailure(run_index, f"{type(exc).__name__}: {exc}")

        if response.status_code != 200:
            return FetchFailure(run_index, f"HTTP {response.status_code}: {_error_detail(response)}")

        try:
            record = RunRecord.from_psi_response(response.json())
        except ValueError as exc:
            return FetchFailure(run_index, f"Invalid response: {exc}")

        logger.debug("Run %s for %s completed", run_index, params["url"])
        return FetchSuccess(run_index, record)

    async def collect(self, url: str, strategy: Strategy, runs: int) -> CollectionResult:
        """
        Run the page `runs` times and build a MetricSet from the successful runs.

        Failed requests and runs reporting a zero speed index are left out, so
        the MetricSet may hold fewer than `runs` samples. Never raises for a
        single bad run.
        """
        if not url or not url.strip():
            raise ValueError("url must be a non-empty string")
        if runs < 1:
            raise ValueError(f"runs must be positive, got {runs}")

        url = url.strip()
        base_ms = int(time.time() * 1000)
        try:
            run_params = [
                self._build_params(url, strategy, _cache_bust_token(base_ms, index))
                for index in range(runs)
            ]
        except httpx.InvalidURL as exc:
            raise ValueError(f"Invalid url {url!r}: {exc}") from exc

        semaphore = asyncio.Semaphore(self.max_concurrency)

        logger.info(f"Collecting {runs} {strategy} runs for {url}")
        async with self._session() as client:
            outcomes = await asyncio.gather(
                *(
                    self._fetch_run(client, semaphore, index, params)
                    for index, params in enumerate(run_params)
                )
            )

        records: List[RunRecord] = []
        failures: List[FetchFailure] = []
        for outcome in outcomes:
            if isinstance(outcome, FetchFailure):
                failures.append(outcome)
            elif outcome.record[Metric.SPEED_INDEX] == 0:
                failures.append(FetchFailure(outcome.run_index, "Run reported a zero speed index"))
            else:
                records.append(outcome.record)

        for failure in failures:
            logger.warning("Run %s for %s (%s) failed: %s", failure.run_index, url, strategy, failure.reason)

        result = CollectionResult(
            url=url,
            strategy=strategy,
            requested_runs=runs,
            metric_set=MetricSet.from_records(records),
            failures=failures,
        )
        logger.info(f"{url} ({strategy}): {result.success_runs}/{runs} runs succeeded")
        return result

    async def collect_metric_set(self, url: str, strategy: Strategy, runs: int) -> MetricSet:
        result = await self.collect(url, strategy, runs)
        return result.metric_set
