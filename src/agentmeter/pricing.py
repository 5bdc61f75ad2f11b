from dataclasses import dataclass
from typing import Mapping

# share of the input rate charged for cache reads when a tier
# does not configure one explicitly
DEFAULT_CACHE_READ_FACTOR = 0.1

TOKENS_PER_RATE_UNIT = 1_000_000


@dataclass(frozen=True, slots=True)
class TierRates:
    """
    TierRates holds the USD price per 1,000,000 tokens for one
    pricing tier.
    """

    input: "float"
    output: "float"
    cache_read: "float | None" = None

    @property
    def cache_read_rate(self) -> "float":
        if self.cache_read is None:
            return self.input * DEFAULT_CACHE_READ_FACTOR
        return self.cache_read


# ordered from most expensive to cheapest: a model name containing
# several tier names resolves to the first one listed here
DEFAULT_PRICING: "Mapping[str, TierRates]" = {
    "opus": TierRates(input=15.0, output=75.0),
    "sonnet": TierRates(input=3.0, output=15.0),
    "haiku": TierRates(input=0.25, output=1.25),
}


def _match_tier(model: "str", pricing: "Mapping[str, TierRates]") -> "str | None":
    lowered = model.lower()
    for tier in pricing:
        if tier in lowered:
            return tier
    return None


def resolve_tier(
    model: "str | None",
    default_model: "str | None" = None,
    pricing: "Mapping[str, TierRates]" = DEFAULT_PRICING,
) -> "str":
    """
    maps a model identifier to a pricing tier.

    Falls back to the tier of the current default model, then to the
    cheapest known tier. Always returns a tier name.
    """
    if model:
        tier = _match_tier(model, pricing)
        if tier is not None:
            return tier

    if default_model:
        tier = _match_tier(default_model, pricing)
        if tier is not None:
            return tier

    return list(pricing)[-1]


def cost(
    uncached_input: "int",
    output: "int",
    tier: "str",
    cache_read: "int" = 0,
    pricing: "Mapping[str, TierRates]" = DEFAULT_PRICING,
) -> "float":
    """
    estimated USD cost of a token mix. Cache reads are always priced at
    the discounted cache rate, never at the full input rate.
    """
    rates = pricing[tier]
    return (
        uncached_input / TOKENS_PER_RATE_UNIT * rates.input
        + cache_read / TOKENS_PER_RATE_UNIT * rates.cache_read_rate
        + output / TOKENS_PER_RATE_UNIT * rates.output
    )
