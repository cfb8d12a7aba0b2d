import asyncio

import pytest

from collabcore.config import RetryConfig
from collabcore.errors import ValidationError
from collabcore.resilience import ResilienceLayer
from collabcore.tools import ToolRegistry, ToolResult, ToolSpec

from fakes import RecordingSleep, ScriptedProvider


def registry(**retry) -> ToolRegistry:
    return ToolRegistry(ResilienceLayer(retry_config=RetryConfig(**retry), sleep=RecordingSleep()))


def image_spec(**kwargs) -> ToolSpec:
    return ToolSpec(
        "generate_image",
        params={"prompt": str, "size": int},
        required=["prompt"],
        **kwargs,
    )


def test_spec_rejects_required_param_not_declared():
    with pytest.raises(ValidationError):
        ToolSpec("search", params={"query": str}, required=["q"])


def test_register_twice_fails_and_listing_is_sorted():
    tools = registry()
    tools.register(image_spec(), ScriptedProvider("img"))
    tools.register(ToolSpec("search", params={"q": str}), ScriptedProvider([]))
    with pytest.raises(ValidationError):
        tools.register(image_spec(), ScriptedProvider("img"))
    assert tools.list_tools() == ["generate_image", "search"]
    tools.unregister("search")
    assert tools.has_tool("search") is False


def test_validate_params():
    tools = registry()
    tools.register(image_spec(), ScriptedProvider("img"))

    with pytest.raises(ValidationError, match="Missing required"):
        tools.validate("generate_image", {"size": 512})
    with pytest.raises(ValidationError, match="Unknown params"):
        tools.validate("generate_image", {"prompt": "cat", "style": "noir"})
    with pytest.raises(ValidationError, match="must be int"):
        tools.validate("generate_image", {"prompt": "cat", "size": "big"})
    with pytest.raises(ValidationError, match="capabilities"):
        tools.validate("generate_image", {"prompt": "cat"}, capabilities=["search"])
    with pytest.raises(ValidationError, match="Unknown tool"):
        tools.validate("video", {})


@pytest.mark.asyncio
async def test_invoke_normalizes_result_and_tracks_cost():
    tools = registry()
    provider = ScriptedProvider({"output": "cat.png", "cost": {"credits": 2}})
    tools.register(image_spec(), provider)

    first = await tools.invoke("generate_image", {"prompt": "cat"}, task_id="t1")
    await tools.invoke("generate_image", {"prompt": "dog", "size": 256})

    assert isinstance(first, ToolResult)
    assert first.output == "cat.png"
    assert first.provider == "generate_image"
    assert first.degraded is False
    assert provider.calls[1] == ("generate_image", {"prompt": "dog", "size": 256})
    assert tools.usage_summary() == {"generate_image": {"calls": 2, "cost": {"credits": 4.0}}}


@pytest.mark.asyncio
async def test_invoke_rejects_invalid_params_before_calling_provider():
    tools = registry()
    provider = ScriptedProvider("img")
    tools.register(image_spec(), provider)

    with pytest.raises(ValidationError):
        await tools.invoke("generate_image", {})
    assert provider.calls == []


@pytest.mark.asyncio
async def test_alternate_provider_serves_when_primary_fails():
    tools = registry(max_attempts=1)
    tools.register(
        image_spec(),
        ScriptedProvider(ConnectionError("connection refused")),
        alternates=[("image-backup", ScriptedProvider("backup.png"))],
    )

    result = await tools.invoke("generate_image", {"prompt": "cat"})
    assert result.output == "backup.png"
    assert result.provider == "image-backup"


@pytest.mark.asyncio
async def test_timeout_degrades_to_manual_review():
    class SlowProvider:
        async def execute(self, tool_name, params):
            await asyncio.sleep(1.0)
            return "late"

    tools = registry(max_attempts=2)
    tools.register(image_spec(timeout=0.01), SlowProvider())

    result = await tools.invoke("generate_image", {"prompt": "cat"})
    assert result.degraded is True
    assert result.provider == "manual_review"
    assert "TransientError" in result.error
