from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from agentmeter.errors import MalformedResponse

SOURCE_ACTUAL = "actual"
SOURCE_ESTIMATED = "estimated"

UNKNOWN_MODEL = "unknown"


def _require_mapping(raw: "Any", what: "str") -> "dict[str, Any]":
    if not isinstance(raw, dict):
        raise MalformedResponse(f"{what} is not an object: {type(raw).__name__}")
    return raw


def _require_list(raw: "Any", what: "str") -> "list[Any]":
    if not isinstance(raw, list):
        raise MalformedResponse(f"{what} is not a list: {type(raw).__name__}")
    return raw


def _token_count(raw: "dict[str, Any]", key: "str", required: "bool" = True) -> "int":
    if key not in raw:
        if required:
            raise MalformedResponse(f"usage result is missing {key}")
        return 0

    value = raw[key]
    # bool is an int subclass and never a valid count
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedResponse(f"{key} is not a non-negative integer: {value!r}")
    return value


def _parse_timestamp(raw: "Any") -> "datetime":
    if not isinstance(raw, str):
        raise MalformedResponse(f"bucket starting_at is not a string: {raw!r}")
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise MalformedResponse(f"bucket starting_at is not ISO 8601: {raw!r}") from exc

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _page_cursor(raw: "dict[str, Any]") -> "tuple[bool, str | None]":
    has_more = bool(raw.get("has_more", False))
    next_page = raw.get("next_page")
    if next_page is not None and not isinstance(next_page, str):
        raise MalformedResponse(f"next_page is not a string: {next_page!r}")
    if has_more and not next_page:
        raise MalformedResponse("has_more without next_page")
    return has_more, next_page or None


@dataclass(frozen=True, slots=True)
class UsageResult:
    """
    UsageResult is one grouped row of the usage feed: token counts
    for a model (and optionally a credential) within a bucket.
    """

    uncached_input_tokens: "int"
    cache_read_input_tokens: "int"
    output_tokens: "int"
    model: "str" = UNKNOWN_MODEL
    # None when the query was not grouped by credential
    credential_id: "str | None" = None

    @property
    def tokens(self) -> "int":
        return (
            self.uncached_input_tokens
            + self.cache_read_input_tokens
            + self.output_tokens
        )

    @classmethod
    def from_json(cls, raw: "Any") -> "UsageResult":
        data = _require_mapping(raw, "usage result")
        credential_id = data.get("credential_id") or data.get("api_key_id")
        return cls(
            uncached_input_tokens=_token_count(data, "uncached_input_tokens"),
            cache_read_input_tokens=_token_count(
                data, "cache_read_input_tokens", required=False
            ),
            output_tokens=_token_count(data, "output_tokens"),
            model=str(data.get("model") or UNKNOWN_MODEL),
            credential_id=str(credential_id) if credential_id else None,
        )


@dataclass(frozen=True, slots=True)
class UsageBucket:
    starting_at: "datetime"
    results: "tuple[UsageResult, ...]" = ()

    @property
    def date(self) -> "str":
        return self.starting_at.date().isoformat()

    @classmethod
    def from_json(cls, raw: "Any") -> "UsageBucket":
        data = _require_mapping(raw, "usage bucket")
        results = _require_list(data.get("results", []), "usage bucket results")
        return cls(
            starting_at=_parse_timestamp(data.get("starting_at")),
            results=tuple(UsageResult.from_json(r) for r in results),
        )


@dataclass(frozen=True, slots=True)
class UsagePage:
    """
    UsagePage is one page of the usage feed. A body without a data
    array is the "no usage yet" case and parses to an empty page.
    """

    data: "tuple[UsageBucket, ...]" = ()
    has_more: "bool" = False
    next_page: "str | None" = None

    @classmethod
    def from_json(cls, raw: "Any") -> "UsagePage":
        body = _require_mapping(raw, "usage response")
        buckets = _require_list(body.get("data", []), "usage response data")
        has_more, next_page = _page_cursor(body)
        return cls(
            data=tuple(UsageBucket.from_json(b) for b in buckets),
            has_more=has_more,
            next_page=next_page,
        )


@dataclass(frozen=True, slots=True)
class CostResult:
    # priced amount in minor currency units (cents)
    amount: "float"

    @classmethod
    def from_json(cls, raw: "Any") -> "CostResult":
        data = _require_mapping(raw, "cost result")
        amount = data.get("amount")
        if isinstance(amount, bool) or not isinstance(amount, (int, float, str)):
            raise MalformedResponse(f"cost amount is not numeric: {amount!r}")
        try:
            return cls(amount=float(amount))
        except ValueError as exc:
            raise MalformedResponse(f"cost amount is not numeric: {amount!r}") from exc


@dataclass(frozen=True, slots=True)
class CostBucket:
    starting_at: "datetime"
    results: "tuple[CostResult, ...]" = ()

    @property
    def date(self) -> "str":
        return self.starting_at.date().isoformat()

    @classmethod
    def from_json(cls, raw: "Any") -> "CostBucket":
        data = _require_mapping(raw, "cost bucket")
        results = _require_list(data.get("results", []), "cost bucket results")
        return cls(
            starting_at=_parse_timestamp(data.get("starting_at")),
            results=tuple(CostResult.from_json(r) for r in results),
        )


@dataclass(frozen=True, slots=True)
class CostPage:
    data: "tuple[CostBucket, ...]" = ()
    has_more: "bool" = False
    next_page: "str | None" = None

    @classmethod
    def from_json(cls, raw: "Any") -> "CostPage":
        body = _require_mapping(raw, "cost response")
        buckets = _require_list(body.get("data", []), "cost response data")
        has_more, next_page = _page_cursor(body)
        return cls(
            data=tuple(CostBucket.from_json(b) for b in buckets),
            has_more=has_more,
            next_page=next_page,
        )


@dataclass(frozen=True, slots=True)
class DailyBreakdownEntry:
    date: "str"
    tokens: "int"
    cost: "float"
    uncached_input: "int"
    cache_read: "int"
    output: "int"
    model: "str"
    credential_id: "str | None" = None


def _add_counts(target: "dict[str, Any]", source: "dict[str, Any]") -> "None":
    for key, value in source.items():
        target[key] = target.get(key, 0) + value


def cache_hit_rate(cache_read: "int", uncached_input: "int") -> "float":
    """
    share of input tokens served from cache, as a percentage rounded
    to one decimal.
    """
    total = cache_read + uncached_input
    if total == 0:
        return 0.0
    return round(cache_read / total * 100, 1)


@dataclass(slots=True)
class CredentialCostRecord:
    """
    CredentialCostRecord accumulates usage for one credential within
    a single refresh cycle. It is only mutated by add() and merge()
    while pages are being combined.
    """

    tokens: "int" = 0
    cost: "float" = 0.0
    # date (YYYY-MM-DD) -> cost
    daily_costs: "dict[str, float]" = field(default_factory=dict)
    # tier -> tokens
    model_tokens: "dict[str, int]" = field(default_factory=dict)
    cache_read: "int" = 0
    uncached_input: "int" = 0

    def add(
        self,
        date: "str",
        tier: "str",
        result: "UsageResult",
        result_cost: "float",
    ) -> "None":
        self.tokens += result.tokens
        self.cost += result_cost
        self.daily_costs[date] = self.daily_costs.get(date, 0.0) + result_cost
        self.model_tokens[tier] = self.model_tokens.get(tier, 0) + result.tokens
        self.cache_read += result.cache_read_input_tokens
        self.uncached_input += result.uncached_input_tokens

    def merge(self, other: "CredentialCostRecord") -> "None":
        self.tokens += other.tokens
        self.cost += other.cost
        _add_counts(self.daily_costs, other.daily_costs)
        _add_counts(self.model_tokens, other.model_tokens)
        self.cache_read += other.cache_read
        self.uncached_input += other.uncached_input


@dataclass(slots=True)
class ExtractionResult:
    """
    ExtractionResult is the normalized form of one or more usage pages.

    complete is False when pagination stopped early on an upstream
    error; the totals then reflect only the pages that arrived.
    """

    daily_breakdown: "list[DailyBreakdownEntry]" = field(default_factory=list)
    total_tokens: "int" = 0
    total_cost: "float" = 0.0
    # credential_id -> record, only populated when grouping by credential
    per_agent: "dict[str, CredentialCostRecord]" = field(default_factory=dict)
    # tier -> tokens
    per_model: "dict[str, int]" = field(default_factory=dict)
    global_cache_read: "int" = 0
    global_uncached_input: "int" = 0
    complete: "bool" = True

    def merge(self, other: "ExtractionResult") -> "None":
        self.daily_breakdown.extend(other.daily_breakdown)
        self.total_tokens += other.total_tokens
        self.total_cost += other.total_cost
        for credential_id, record in other.per_agent.items():
            self.per_agent.setdefault(credential_id, CredentialCostRecord()).merge(
                record
            )
        _add_counts(self.per_model, other.per_model)
        self.global_cache_read += other.global_cache_read
        self.global_uncached_input += other.global_uncached_input
        self.complete = self.complete and other.complete

    def daily_costs(self) -> "dict[str, float]":
        costs: "dict[str, float]" = {}
        for entry in self.daily_breakdown:
            costs[entry.date] = costs.get(entry.date, 0.0) + entry.cost
        return costs


@dataclass(slots=True)
class ActualCostResult:
    """
    ActualCostResult carries billed amounts in USD, already converted
    from minor currency units.
    """

    total_cost: "float" = 0.0
    daily_costs: "dict[str, float]" = field(default_factory=dict)
    complete: "bool" = True

    def merge(self, other: "ActualCostResult") -> "None":
        self.total_cost += other.total_cost
        _add_counts(self.daily_costs, other.daily_costs)
        self.complete = self.complete and other.complete


@dataclass(frozen=True, slots=True)
class AgentRecord:
    name: "str"
    slug: "str"
    credential_id: "str"
    color: "str" = "#007acc"


@dataclass(frozen=True, slots=True)
class AgentSummary:
    """
    AgentSummary is the published per-credential view. all_time
    covers completed days only; today is the live estimate.
    """

    name: "str"
    color: "str"
    credential_id: "str"
    today: "float" = 0.0
    all_time: "float" = 0.0
    tokens: "int" = 0
    estimated_daily: "float" = 0.0
    cache_hit_rate: "float" = 0.0
    # tier -> percent
    models: "dict[str, int]" = field(default_factory=dict)

    def to_dict(self) -> "dict[str, Any]":
        return {
            "name": self.name,
            "color": self.color,
            "credentialId": self.credential_id,
            "today": self.today,
            "allTime": self.all_time,
            "tokens": self.tokens,
            "estimatedDaily": self.estimated_daily,
            "cacheHitRate": self.cache_hit_rate,
            "models": dict(self.models),
        }


@dataclass(frozen=True, slots=True)
class TodayTotals:
    tokens: "int" = 0
    cost: "float" = 0.0


@dataclass(frozen=True, slots=True)
class AllTimeTotals:
    # completed days only, today is reported separately
    cost: "float" = 0.0
    source: "str" = SOURCE_ESTIMATED


@dataclass(frozen=True, slots=True)
class TokenMetricsSnapshot:
    """
    TokenMetricsSnapshot is the published result of one refresh cycle.
    It is replaced as a whole, never patched.
    """

    today: "TodayTotals" = field(default_factory=TodayTotals)
    all_time: "AllTimeTotals" = field(default_factory=AllTimeTotals)
    # agent slug -> summary
    per_agent: "dict[str, AgentSummary]" = field(default_factory=dict)
    # tier -> percent
    model_breakdown: "dict[str, int]" = field(default_factory=dict)
    cache_hit_rate: "float" = 0.0
    # (date, cost) pairs, ascending by date
    daily_cost_history: "tuple[tuple[str, float], ...]" = ()
    projected_monthly: "float" = 0.0
    week_over_week: "float" = 0.0
    mtd_cost: "float" = 0.0
    avg_daily7: "float" = 0.0
    cost_alert_threshold: "float | None" = None
    threshold_exceeded: "bool" = False
    last_updated: "datetime | None" = None

    @classmethod
    def empty(cls) -> "TokenMetricsSnapshot":
        return cls()

    def to_dict(self) -> "dict[str, Any]":
        """
        camelCase JSON-ready form consumed by the dashboard and export
        endpoints.
        """
        return {
            "today": {"tokens": self.today.tokens, "cost": self.today.cost},
            "allTime": {"cost": self.all_time.cost, "source": self.all_time.source},
            "perAgent": {
                slug: summary.to_dict() for slug, summary in self.per_agent.items()
            },
            "modelBreakdown": dict(self.model_breakdown),
            "cacheHitRate": self.cache_hit_rate,
            "dailyCostHistory": [
                {"date": date, "cost": day_cost}
                for date, day_cost in self.daily_cost_history
            ],
            "projectedMonthly": self.projected_monthly,
            "weekOverWeek": self.week_over_week,
            "mtdCost": self.mtd_cost,
            "avgDaily7": self.avg_daily7,
            "costAlertThreshold": self.cost_alert_threshold,
            "thresholdExceeded": self.threshold_exceeded,
            "lastUpdated": (
                self.last_updated.isoformat() if self.last_updated else None
            ),
        }
