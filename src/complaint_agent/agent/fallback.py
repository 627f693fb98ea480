"""Tiered fallback across providers.

Failures that a cheaper or different backend might not share (rate limits,
5xx, bad model ids, network, auth, safety filters, overload) move the call one
tier down the table without consuming an attempt. Anything else retries the
same tier with linear backoff until the attempt budget runs out.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from complaint_agent.agent.failures import FailureClassification, classify_failure
from complaint_agent.config import FallbackConfig, TierConfig, validate_tier_table
from complaint_agent.errors import AllProvidersExhaustedError
from complaint_agent.providers.base import ProviderAdapter
from complaint_agent.providers.registry import ProviderRegistry
from complaint_agent.types import TierEscalation

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[ProviderAdapter, TierConfig], Awaitable[T]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class FallbackOutcome(Generic[T]):
    value: T
    tier: TierConfig
    escalations: list[TierEscalation] = field(default_factory=list)
    calls: int = 1


class TieredFallbackController:
    def __init__(
        self,
        registry: ProviderRegistry,
        tiers: Sequence[TierConfig],
        config: FallbackConfig | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        on_escalation: Callable[[TierEscalation], None] | None = None,
    ) -> None:
        self.registry = registry
        self.tiers = validate_tier_table(list(tiers))
        self.config = config or FallbackConfig()
        self._sleep = sleep
        self._on_escalation = on_escalation

    @property
    def max_tier(self) -> int:
        return len(self.tiers) - 1

    async def run(self, operation: Operation[T]) -> FallbackOutcome[T]:
        """Run `operation` against successive tiers until it succeeds.

        Raises `AllProvidersExhaustedError` chained from the last failure.
        `asyncio.CancelledError` is never caught.
        """
        tier_index = 0
        attempts = 0
        calls = 0
        escalations: list[TierEscalation] = []

        while True:
            tier = self.tiers[tier_index]
            calls += 1
            try:
                adapter = self.registry.create(tier)
                value = await operation(adapter, tier)
            except Exception as exc:
                failure = classify_failure(exc)
                if failure.should_escalate and tier_index < self.max_tier:
                    escalation = self._escalate(tier_index, failure)
                    escalations.append(escalation)
                    tier_index += 1
                    await self._sleep(self.config.escalation_backoff_seconds)
                    continue

                attempts += 1
                if attempts >= self.config.max_attempts:
                    logger.error(
                        "All providers exhausted after %d call(s) at tier %d (%s): %s",
                        calls,
                        tier.tier,
                        failure.kind.value,
                        failure.message,
                    )
                    raise AllProvidersExhaustedError(exc, tier=tier.tier, kind=failure.kind, calls=calls) from exc

                delay = self.config.retry_backoff_seconds * attempts
                logger.info(
                    "Retrying tier %d (%s) attempt %d/%d in %.1fs: %s",
                    tier.tier,
                    failure.kind.value,
                    attempts + 1,
                    self.config.max_attempts,
                    delay,
                    failure.message,
                )
                await self._sleep(delay)
                continue

            if escalations:
                logger.info("Served by fallback tier %d (%s) after %d call(s)", tier.tier, tier.model_id, calls)
            return FallbackOutcome(value=value, tier=tier, escalations=escalations, calls=calls)

    def _escalate(self, tier_index: int, failure: FailureClassification) -> TierEscalation:
        escalation = TierEscalation(
            from_tier=tier_index,
            to_tier=tier_index + 1,
            kind=failure.kind.value,
            reason=failure.message,
        )
        logger.warning(
            "Escalating from tier %d to tier %d (%s): %s",
            escalation.from_tier,
            escalation.to_tier,
            escalation.kind,
            escalation.reason,
        )
        if self._on_escalation is not None:
            self._on_escalation(escalation)
        return escalation
