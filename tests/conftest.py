from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from agentmeter.models import UsagePage


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


def usage_result(
    uncached: "int" = 0,
    cache_read: "int" = 0,
    output: "int" = 0,
    model: "str | None" = "claude-3-haiku-20240307",
    credential_id: "str | None" = None,
) -> "dict[str, Any]":
    result: "dict[str, Any]" = {
        "uncached_input_tokens": uncached,
        "cache_read_input_tokens": cache_read,
        "output_tokens": output,
    }
    if model is not None:
        result["model"] = model
    if credential_id is not None:
        result["api_key_id"] = credential_id
    return result


def usage_body(
    buckets: "list[tuple[str, list[dict[str, Any]]]]",
    has_more: "bool" = False,
    next_page: "str | None" = None,
) -> "dict[str, Any]":
    return {
        "data": [
            {"starting_at": f"{day}T00:00:00Z", "results": results}
            for day, results in buckets
        ],
        "has_more": has_more,
        "next_page": next_page,
    }


@pytest.fixture()
def make_usage_page() -> "Any":
    """
    builds a parsed UsagePage from (date, results) pairs.
    """

    def _make(
        buckets: "list[tuple[str, list[dict[str, Any]]]]",
        has_more: "bool" = False,
        next_page: "str | None" = None,
    ) -> "UsagePage":
        return UsagePage.from_json(usage_body(buckets, has_more, next_page))

    return _make


@pytest.fixture()
def make_usage_result() -> "Any":
    return usage_result
