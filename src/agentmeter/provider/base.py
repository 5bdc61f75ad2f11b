from typing import Protocol, Sequence

from agentmeter.models import CostPage, UsagePage


class UsageSource(Protocol):
    """
    UsageSource stands as the common protocol for the upstream
    usage-reporting and billing feeds.

    Implementations fetch a single page per call and raise an
    agentmeter.errors.UpstreamError subclass on failure; pagination
    is driven by the fetchers.
    """

    @property
    def name(self) -> "str": ...

    async def get_usage_page(
        self,
        starting_at: "str",
        ending_at: "str",
        bucket_width: "str",
        group_by: "Sequence[str]",
        page: "str | None" = None,
        limit: "int | None" = None,
        credential_ids: "Sequence[str] | None" = None,
    ) -> "UsagePage": ...

    async def get_cost_page(
        self,
        starting_at: "str",
        ending_at: "str",
        page: "str | None" = None,
    ) -> "CostPage": ...

    async def close(self) -> "None": ...
