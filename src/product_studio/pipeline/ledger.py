"""Per-call cost ledger with recomputed task totals."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from product_studio.pipeline.models import (
    CostEntryView,
    CostMetadata,
    CostSummary,
    CurrencyClass,
)
from product_studio.pipeline.repository import PipelineRepository
from product_studio.providers.base import CostLookup, ProviderCall

logger = logging.getLogger(__name__)

DEFAULT_CONVERSION_RATE = 7.2


class CostLedger:
    """Append cost entries and keep the task total equal to their sum."""

    def __init__(
        self,
        repository: PipelineRepository,
        *,
        cost_lookup: CostLookup | None = None,
        conversion_rate: float = DEFAULT_CONVERSION_RATE,
    ) -> None:
        self._repository = repository
        self._cost_lookup = cost_lookup
        self._conversion_rate = conversion_rate

    def record(  # noqa: PLR0913
        self,
        task_id: str,
        stage: int,
        amount: float,
        currency_class: CurrencyClass,
        metadata: CostMetadata | None = None,
    ) -> float:
        """Append one entry and return the re-summed task total."""

        self._repository.add_cost_entry(
            task_id=task_id,
            stage=stage,
            amount=amount,
            currency_class=currency_class,
            metadata=metadata,
        )
        return self._repository.recompute_task_total(task_id)

    async def record_calls(
        self,
        task_id: str,
        stage: int,
        calls: Sequence[ProviderCall],
    ) -> None:
        """Price and record each call; failures are logged and never raised."""

        for call in calls:
            try:
                await self._record_call(task_id, stage, call)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Cost recording failed for task %s stage %s call %s (%s)",
                    task_id,
                    stage,
                    call.call_id,
                    call.model,
                )

    async def _record_call(self, task_id: str, stage: int, call: ProviderCall) -> None:
        if not call.is_metered:
            self.record(
                task_id,
                stage,
                float(call.fixed_cost or 0.0),
                call.currency_class,
                CostMetadata(call_id=call.call_id, model=call.model, latency_ms=call.latency_ms),
            )
            return
        if call.call_id is None:
            logger.info("Skipping metered call without id for task %s stage %s", task_id, stage)
            return
        if self._cost_lookup is None:
            logger.info("No cost lookup configured; call %s left unpriced", call.call_id)
            return
        quote = await self._cost_lookup.lookup(call.call_id)
        self.record(
            task_id,
            stage,
            quote.amount,
            quote.currency_class,
            CostMetadata(
                call_id=call.call_id,
                model=call.model,
                tokens_prompt=quote.tokens_prompt,
                tokens_completion=quote.tokens_completion,
                latency_ms=quote.latency_ms if quote.latency_ms is not None else call.latency_ms,
            ),
        )

    def summarize_task(self, task_id: str) -> CostSummary:
        return summarize(
            self._repository.list_cost_entries(task_id),
            conversion_rate=self._conversion_rate,
        )


def summarize(
    entries: Iterable[CostEntryView],
    *,
    conversion_rate: float = DEFAULT_CONVERSION_RATE,
) -> CostSummary:
    """Split spend by currency class and add a display-only total in the fixed currency.

    The reference total converts metered USD at `conversion_rate`; it is a
    convenience for display, not an accounting figure.
    """

    by_class: dict[CurrencyClass, float] = {currency: 0.0 for currency in CurrencyClass}
    calls = 0
    for entry in entries:
        by_class[entry.currency_class] += entry.amount
        calls += 1
    reference_total = (
        by_class[CurrencyClass.METERED_USD] * conversion_rate + by_class[CurrencyClass.FIXED_CNY]
    )
    return CostSummary(
        by_class=by_class,
        calls=calls,
        reference_total=round(reference_total, 6),
    )
