from typing import Iterable, Mapping

from agentmeter.models import (
    CredentialCostRecord,
    DailyBreakdownEntry,
    ExtractionResult,
    UsagePage,
)
from agentmeter.pricing import DEFAULT_PRICING, TierRates, cost, resolve_tier


def extract(
    page: "UsagePage",
    group_by_credential: "bool",
    default_model: "str | None" = None,
    pricing: "Mapping[str, TierRates]" = DEFAULT_PRICING,
) -> "ExtractionResult":
    """
    normalizes one usage page into per-entry costs, running totals,
    per-tier token totals and, when grouping by credential, per-credential
    accumulators.

    Zero-token results still count towards the totals but are not
    recorded in the daily breakdown, which keeps the series sparse.
    """
    extraction = ExtractionResult()

    for bucket in page.data:
        date = bucket.date

        for result in bucket.results:
            tokens = result.tokens
            tier = resolve_tier(result.model, default_model, pricing)
            result_cost = cost(
                result.uncached_input_tokens,
                result.output_tokens,
                tier,
                cache_read=result.cache_read_input_tokens,
                pricing=pricing,
            )

            extraction.total_tokens += tokens
            extraction.total_cost += result_cost
            extraction.per_model[tier] = extraction.per_model.get(tier, 0) + tokens
            extraction.global_cache_read += result.cache_read_input_tokens
            extraction.global_uncached_input += result.uncached_input_tokens

            if group_by_credential and result.credential_id:
                record = extraction.per_agent.setdefault(
                    result.credential_id, CredentialCostRecord()
                )
                record.add(date, tier, result, result_cost)

            if tokens > 0:
                extraction.daily_breakdown.append(
                    DailyBreakdownEntry(
                        date=date,
                        tokens=tokens,
                        cost=result_cost,
                        uncached_input=result.uncached_input_tokens,
                        cache_read=result.cache_read_input_tokens,
                        output=result.output_tokens,
                        model=result.model,
                        credential_id=result.credential_id,
                    )
                )

    return extraction


def merge_results(results: "Iterable[ExtractionResult]") -> "ExtractionResult":
    """
    folds extraction results together by key-wise summation. The inputs
    are left untouched.
    """
    merged = ExtractionResult()
    for result in results:
        merged.merge(result)
    return merged


def tier_percentages(tokens_by_tier: "Mapping[str, int]") -> "dict[str, int]":
    """
    converts tier token totals into integer percentages using the
    largest-remainder method, so the values sum to exactly 100 whenever
    any tokens were used.
    """
    total = sum(tokens_by_tier.values())
    if total <= 0:
        return {}

    exact = {tier: tokens / total * 100 for tier, tokens in tokens_by_tier.items()}
    percentages = {tier: int(value) for tier, value in exact.items()}
    shortfall = 100 - sum(percentages.values())

    # hand the leftover points to the largest fractional parts
    by_remainder = sorted(
        exact, key=lambda tier: exact[tier] - percentages[tier], reverse=True
    )
    for tier in by_remainder[:shortfall]:
        percentages[tier] += 1

    return {tier: pct for tier, pct in percentages.items() if pct > 0}
