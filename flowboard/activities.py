"""Units of work run by the template's task steps."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol

import httpx

from .config import WorkflowConfig

logger = logging.getLogger(__name__)


@dataclass
class ActivityContext:
    instance_id: str
    params: Mapping[str, Any]
    step_index: int
    attempt: int = 1
    # outputs of the steps completed so far, by step index
    outputs: Dict[int, Any] = field(default_factory=dict)


Activity = Callable[[ActivityContext], Awaitable[Any]]


class DocumentSource(Protocol):
    async def list_documents(self) -> List[str]:
        """Names of the documents to process."""


class StaticDocumentSource:
    def __init__(self, documents: List[str]) -> None:
        self._documents = list(documents)

    async def list_documents(self) -> List[str]:
        return list(self._documents)


class WriteTarget(Protocol):
    async def write(self, instance_id: str, payload: Mapping[str, Any]) -> None:
        """Persist ``payload``; raise to signal a failed attempt."""


class NullWriteTarget:
    """Accepts every write without sending it anywhere."""

    async def write(self, instance_id: str, payload: Mapping[str, Any]) -> None:
        logger.debug("Discarding write", extra={"instance_id": instance_id})


class HttpWriteTarget:
    """POST the payload as JSON to ``url``."""

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self._client = client
        self.url = url

    async def write(self, instance_id: str, payload: Mapping[str, Any]) -> None:
        response = await self._client.post(
            self.url, json={"instanceId": instance_id, **payload}
        )
        response.raise_for_status()


class Activities:
    """Activity implementations looked up by name from the template."""

    def __init__(
        self,
        config: WorkflowConfig,
        client: httpx.AsyncClient,
        documents: Optional[DocumentSource] = None,
        write_target: Optional[WriteTarget] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._documents = documents or StaticDocumentSource(config.documents)
        if write_target is None:
            write_target = (
                HttpWriteTarget(client, config.write_url)
                if config.write_url
                else NullWriteTarget()
            )
        self._write_target = write_target

    def resolve(self, name: str) -> Activity:
        activity = getattr(self, name, None)
        if name.startswith("_") or not callable(activity):
            raise LookupError(f"Unknown activity: {name}")
        return activity

    async def fetch_files(self, ctx: ActivityContext) -> Dict[str, Any]:
        await asyncio.sleep(self._config.fetch_delay_seconds)
        files = await self._documents.list_documents()
        return {"inputParams": dict(ctx.params), "files": files}

    async def fetch_api_data(self, ctx: ActivityContext) -> Any:
        response = await self._client.get(
            self._config.api_url, timeout=self._config.api_timeout_seconds
        )
        response.raise_for_status()
        return response.json()

    async def write_operation(self, ctx: ActivityContext) -> Dict[str, Any]:
        files = (ctx.outputs.get(0) or {}).get("files", [])
        await self._write_target.write(ctx.instance_id, {"files": files})
        return {"message": "Write operation successful", "retries": ctx.attempt}
