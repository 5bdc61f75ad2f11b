from typing import Any, Sequence

import httpx
import structlog

from agentmeter.errors import (
    MalformedResponse,
    OtherUpstreamError,
    ThrottlingError,
    TransportFailure,
    UpstreamError,
)
from agentmeter.models import CostPage, UsagePage

logger = structlog.get_logger()

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
USAGE_REPORT_PATH = "/v1/organizations/usage_report/messages"
COST_REPORT_PATH = "/v1/organizations/cost_report"

THROTTLING_ERROR_TYPE = "rate_limit_error"


def _upstream_error(status_code: "int", body: "Any") -> "UpstreamError | None":
    """
    maps an HTTP status and decoded body to the matching UpstreamError,
    or None when the response is a success.
    """
    error: "Any" = None
    if isinstance(body, dict):
        error = body.get("error")

    if error is None and status_code < 400:
        return None

    error_type = ""
    message = f"HTTP {status_code}"
    if isinstance(error, dict):
        error_type = str(error.get("type") or "")
        message = str(error.get("message") or message)
    elif isinstance(error, str):
        message = error

    if status_code == 429 or error_type == THROTTLING_ERROR_TYPE:
        return ThrottlingError(message, error_type=error_type or THROTTLING_ERROR_TYPE)

    return OtherUpstreamError(message, error_type=error_type or f"http_{status_code}")


class AnthropicAdminClient:
    """
    AnthropicAdminClient implements the UsageSource protocol against the
    Anthropic admin API usage and cost reports. Each call fetches exactly
    one page; failures surface as typed UpstreamError subclasses.
    """

    def __init__(
        self,
        api_key: "str",
        base_url: "str" = ANTHROPIC_BASE_URL,
        timeout: "float" = 30.0,
    ) -> "None":
        self._base_url = base_url.rstrip("/")
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(
            timeout=timeout,
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
        )

    @property
    def name(self) -> "str":
        return "anthropic"

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def get_usage_page(
        self,
        starting_at: "str",
        ending_at: "str",
        bucket_width: "str",
        group_by: "Sequence[str]",
        page: "str | None" = None,
        limit: "int | None" = None,
        credential_ids: "Sequence[str] | None" = None,
    ) -> "UsagePage":
        params: "list[tuple[str, str]]" = [
            ("starting_at", starting_at),
            ("ending_at", ending_at),
            ("bucket_width", bucket_width),
        ]
        params.extend(("group_by[]", key) for key in group_by)
        params.extend(("api_key_ids[]", cid) for cid in credential_ids or ())
        if limit is not None:
            params.append(("limit", str(limit)))
        if page:
            params.append(("page", page))

        body = await self._get(USAGE_REPORT_PATH, params)
        return UsagePage.from_json(body)

    async def get_cost_page(
        self,
        starting_at: "str",
        ending_at: "str",
        page: "str | None" = None,
    ) -> "CostPage":
        params: "list[tuple[str, str]]" = [
            ("starting_at", starting_at),
            ("ending_at", ending_at),
            ("bucket_width", "1d"),
        ]
        if page:
            params.append(("page", page))

        body = await self._get(COST_REPORT_PATH, params)
        return CostPage.from_json(body)

    async def _get(self, path: "str", params: "list[tuple[str, str]]") -> "Any":
        logger.debug("anthropic_request", path=path, params=params)
        try:
            resp = await self._client.get(f"{self._base_url}{path}", params=params)
        except httpx.TransportError as exc:
            raise TransportFailure(str(exc) or type(exc).__name__) from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        error = _upstream_error(resp.status_code, body)
        if error is not None:
            raise error

        if body is None:
            raise MalformedResponse(f"undecodable body from {path}")

        return body
