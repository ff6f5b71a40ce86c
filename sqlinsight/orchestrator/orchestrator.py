"""Analysis Orchestrator: fans one request out to per-dimension tools.

Flow of a run:
  1. Dimension selection: every registered tool plus any flagged dimension;
     zero enabled dimensions ends the run in ERROR_TERMINAL
  2. Dispatch: one tool invocation per enabled dimension, concurrently
  3. Awaiting: each invocation has its own timeout; a timeout or a
     low-confidence answer is retried with exponential backoff + jitter
  4. Aggregation: per-dimension data (None for disabled dimensions),
     mean confidence, timings and invocation counts
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
import time
from typing import Mapping

from sqlinsight.core.config import Settings
from sqlinsight.core.config import settings as default_settings
from sqlinsight.gateway.types import ModelInvoker
from sqlinsight.orchestrator.types import (
    NO_DIMENSIONS_ERROR,
    AnalysisContext,
    DimensionTiming,
    OrchestrationResult,
    OrchestratorConfig,
    OrchestratorState,
)
from sqlinsight.parsing.adapter import ResponseAdapter
from sqlinsight.parsing.cache import ParseCache
from sqlinsight.parsing.parser import IntelligentParser
from sqlinsight.parsing.preprocessor import ContentPreprocessor
from sqlinsight.tools.base import AnalysisTool, DimensionConfig, DimensionParams, ToolResult
from sqlinsight.tools.dimensions import DIMENSION_CONFIGS

logger = logging.getLogger(__name__)


def calculate_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 8.0) -> float:
    """Exponential backoff with jitter: min(base * 2^attempt + random(0, base/2), max)."""
    exponential = base_delay * (2**attempt)
    jitter = random.uniform(0, base_delay * 0.5)
    return min(exponential + jitter, max_delay)


class AnalysisOrchestrator:
    """Runs enabled dimensions concurrently and aggregates their results."""

    def __init__(
        self,
        tools: Mapping[str, AnalysisTool],
        config: OrchestratorConfig | None = None,
    ):
        self.tools = dict(tools)
        self.config = config or OrchestratorConfig()

    def _transition(self, context: AnalysisContext, current: OrchestratorState, new: OrchestratorState) -> OrchestratorState:
        logger.debug(
            "Orchestration %s: %s -> %s",
            context.request_id,
            current.value,
            new.value,
            extra={"request_id": context.request_id},
        )
        return new

    async def run(self, context: AnalysisContext) -> OrchestrationResult:
        """Analyse ``context.subject`` along every enabled dimension."""
        start = time.monotonic()
        state = OrchestratorState.IDLE
        mode = "parallel" if self.config.parallel_execution else "sequential"

        # -- Dimension selection --------------------------------------------
        state = self._transition(context, state, OrchestratorState.DIMENSION_SELECTION)
        # a re-run replaces the previous run's results and errors
        context.errors.clear()
        context.results.clear()
        requested = list(self.tools) + [name for name in context.dimensions if name not in self.tools]
        by_dimension: dict[str, dict | None] = {name: None for name in requested}

        runnable: list[str] = []
        for name in requested:
            if not context.is_enabled(name):
                continue
            if name not in self.tools:
                context.add_error("dimension_selection", f"no tool registered for {name!r}", name)
                continue
            runnable.append(name)

        if not runnable:
            state = self._transition(context, state, OrchestratorState.ERROR_TERMINAL)
            context.add_error("dimension_selection", NO_DIMENSIONS_ERROR)
            for name in requested:
                context.set_result(name, None)
            logger.warning(
                "Orchestration %s aborted: no dimension enabled",
                context.request_id,
                extra={"request_id": context.request_id},
            )
            return OrchestrationResult(
                request_id=context.request_id,
                success=False,
                state=state,
                by_dimension=by_dimension,
                total_elapsed_ms=int((time.monotonic() - start) * 1000),
                errors=tuple(context.errors),
                error=NO_DIMENSIONS_ERROR,
                variant=context.variant,
                execution_mode=mode,
            )

        # -- Dispatch + Awaiting --------------------------------------------
        state = self._transition(context, state, OrchestratorState.DISPATCH)
        params = DimensionParams(subject=context.subject, variant=context.variant)
        state = self._transition(context, state, OrchestratorState.AWAITING)

        if self.config.parallel_execution:
            gathered = await asyncio.gather(
                *(self._execute_dimension(name, params, context) for name in runnable),
                return_exceptions=True,
            )
        else:
            gathered = []
            for name in runnable:
                try:
                    gathered.append(await self._execute_dimension(name, params, context))
                except Exception as e:
                    gathered.append(e)

        # -- Aggregation ----------------------------------------------------
        state = self._transition(context, state, OrchestratorState.AGGREGATION)
        tool_results: dict[str, ToolResult] = {}
        timings: dict[str, DimensionTiming] = {}
        for name, outcome in zip(runnable, gathered):
            if isinstance(outcome, BaseException):
                logger.error("Dimension %s crashed: %s", name, outcome, extra={"dimension": name})
                result = self.tools[name].default_result(f"{type(outcome).__name__}: {outcome}")
                timing = DimensionTiming(dimension=name, attempts=1)
            else:
                result, timing = outcome
            tool_results[name] = result
            timings[name] = timing
            by_dimension[name] = result.data
            if result.error:
                context.add_error("tool", result.error, name)

        for name, data in by_dimension.items():
            context.set_result(name, data)

        overall_confidence = round(sum(r.confidence for r in tool_results.values()) / len(tool_results), 3)
        invocation_count = sum(t.attempts for t in timings.values())
        total_elapsed_ms = int((time.monotonic() - start) * 1000)

        state = self._transition(context, state, OrchestratorState.DONE)
        logger.info(
            "Orchestration %s complete: dimensions=%s, confidence=%.2f, invocations=%d, elapsed_ms=%d",
            context.request_id,
            ",".join(runnable),
            overall_confidence,
            invocation_count,
            total_elapsed_ms,
            extra={"request_id": context.request_id},
        )
        return OrchestrationResult(
            request_id=context.request_id,
            success=any(r.success for r in tool_results.values()),
            state=state,
            by_dimension=by_dimension,
            overall_confidence=overall_confidence,
            timings=timings,
            total_elapsed_ms=total_elapsed_ms,
            invocation_count=invocation_count,
            errors=tuple(context.errors),
            tool_results=tool_results,
            variant=context.variant,
            execution_mode=mode,
        )

    async def _execute_dimension(
        self,
        name: str,
        params: DimensionParams,
        context: AnalysisContext,
    ) -> tuple[ToolResult, DimensionTiming]:
        """Run one tool under its deadline, retrying low-confidence answers.

        Keeps the highest-confidence attempt.
        """
        tool = self.tools[name]
        cfg = self.config
        start = time.monotonic()
        best: ToolResult | None = None
        best_timed_out = False
        attempts = 0

        for attempt in range(cfg.max_retries + 1):
            attempts += 1
            timed_out = False
            try:
                result = await asyncio.wait_for(tool.execute(params), timeout=cfg.tool_timeout_seconds)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(
                    "Dimension %s timed out after %.1fs (attempt %d)",
                    name,
                    cfg.tool_timeout_seconds,
                    attempts,
                    extra={"dimension": name, "request_id": context.request_id},
                )
                result = tool.default_result(
                    f"timed out after {cfg.tool_timeout_seconds}s",
                    elapsed_ms=int(cfg.tool_timeout_seconds * 1000),
                )
            except Exception as e:
                result = tool.default_result(f"{type(e).__name__}: {e}")

            if best is None or result.confidence > best.confidence:
                best, best_timed_out = result, timed_out

            if best.confidence >= cfg.retry_confidence_threshold or attempt >= cfg.max_retries:
                break

            delay = calculate_backoff(attempt, cfg.retry_base_delay, cfg.retry_max_delay)
            logger.info(
                "Retry %d/%d for %s in %.1fs (confidence %.2f)",
                attempt + 1,
                cfg.max_retries,
                name,
                delay,
                best.confidence,
                extra={"dimension": name, "request_id": context.request_id},
            )
            await asyncio.sleep(delay)

        timing = DimensionTiming(
            dimension=name,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            attempts=attempts,
            timed_out=best_timed_out,
        )
        return best, timing

    async def run_batch(
        self,
        contexts: list[AnalysisContext],
        max_concurrent: int | None = None,
    ) -> list[OrchestrationResult]:
        """Run several requests with bounded concurrency; results keep input order."""
        if not contexts:
            return []
        semaphore = asyncio.Semaphore(max_concurrent or self.config.batch_max_concurrent)

        async def _run_with_semaphore(context: AnalysisContext) -> OrchestrationResult:
            async with semaphore:
                return await self.run(context)

        return list(await asyncio.gather(*(_run_with_semaphore(c) for c in contexts)))


def build_default_orchestrator(
    invoker: ModelInvoker,
    settings: Settings | None = None,
    *,
    repair_invoker: ModelInvoker | None = None,
    cache: ParseCache | None = None,
    dimensions: Mapping[str, DimensionConfig] | None = None,
) -> AnalysisOrchestrator:
    """Wire the built-in dimensions (or ``dimensions``) into an orchestrator.

    All tools share one adapter, preprocessor and parser, and therefore one
    parse cache.
    """
    settings = settings or default_settings

    if cache is None and settings.parse_cache_enabled:
        cache = ParseCache(max_size=settings.parse_cache_max_size, ttl_seconds=settings.parse_cache_ttl_seconds)

    adapter = ResponseAdapter()
    preprocessor = ContentPreprocessor()
    parser = IntelligentParser(
        repair_invoker=repair_invoker if settings.model_repair_enabled else None,
        cache=cache,
        adapter=adapter,
        preprocessor=preprocessor,
    )

    tools = {}
    for name, config in (dimensions or DIMENSION_CONFIGS).items():
        config = dataclasses.replace(config, temperature=settings.llm_temperature, max_tokens=settings.llm_max_tokens)
        tools[name] = AnalysisTool(config, invoker, adapter=adapter, preprocessor=preprocessor, parser=parser)

    return AnalysisOrchestrator(tools, OrchestratorConfig.from_settings(settings))
