import json

import httpx
import pytest

from flowboard.activities import (
    Activities,
    ActivityContext,
    HttpWriteTarget,
    NullWriteTarget,
    StaticDocumentSource,
)
from flowboard.config import WorkflowConfig
from tests.helpers import API_PAYLOAD, fast_workflow_config, mock_api_client


def _ctx(**overrides):
    values = {"instance_id": "wf-1", "params": {"email": "ops@example.com"}, "step_index": 0}
    values.update(overrides)
    return ActivityContext(**values)


@pytest.mark.asyncio
async def test_fetch_files_returns_params_and_documents():
    activities = Activities(fast_workflow_config(), mock_api_client())
    output = await activities.fetch_files(_ctx())

    assert output["inputParams"] == {"email": "ops@example.com"}
    assert output["files"] == WorkflowConfig().documents
    assert output["files"][0] == "doc_7392_rev3.pdf"


@pytest.mark.asyncio
async def test_fetch_files_uses_document_source():
    activities = Activities(
        fast_workflow_config(), mock_api_client(), documents=StaticDocumentSource(["a.pdf"])
    )
    assert (await activities.fetch_files(_ctx()))["files"] == ["a.pdf"]


@pytest.mark.asyncio
async def test_fetch_api_data_returns_json_body():
    activities = Activities(fast_workflow_config(), mock_api_client())
    assert await activities.fetch_api_data(_ctx(step_index=2)) == API_PAYLOAD


@pytest.mark.asyncio
async def test_fetch_api_data_raises_on_error_status():
    activities = Activities(fast_workflow_config(), mock_api_client({"success": False}, 503))
    with pytest.raises(httpx.HTTPStatusError):
        await activities.fetch_api_data(_ctx(step_index=2))


@pytest.mark.asyncio
async def test_write_operation_reports_attempt():
    activities = Activities(fast_workflow_config(), mock_api_client(), write_target=NullWriteTarget())
    output = await activities.write_operation(_ctx(step_index=4, attempt=3))
    assert output == {"message": "Write operation successful", "retries": 3}


@pytest.mark.asyncio
async def test_http_write_target_posts_files():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    config = fast_workflow_config(write_url="https://storage.example.com/writes")
    activities = Activities(config, client)

    await activities.write_operation(
        _ctx(step_index=4, outputs={0: {"files": ["a.pdf"]}})
    )

    assert len(requests) == 1
    assert str(requests[0].url) == "https://storage.example.com/writes"
    assert json.loads(requests[0].content) == {"instanceId": "wf-1", "files": ["a.pdf"]}


@pytest.mark.asyncio
async def test_http_write_target_failure_raises():
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )
    with pytest.raises(httpx.HTTPStatusError):
        await HttpWriteTarget(client, "https://storage.example.com").write("wf-1", {})


def test_resolve_rejects_unknown_activities():
    activities = Activities(fast_workflow_config(), mock_api_client())
    assert activities.resolve("fetch_files") == activities.fetch_files
    with pytest.raises(LookupError):
        activities.resolve("delete_everything")
    with pytest.raises(LookupError):
        activities.resolve("_config")
