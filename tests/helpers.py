"""Shared test doubles."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping

import httpx

from flowboard.config import RetryConfig, WorkflowConfig

API_PAYLOAD = {
    "result": {"ipv4_cidrs": ["173.245.48.0/20"], "ipv6_cidrs": ["2400:cb00::/32"]},
    "success": True,
    "errors": [],
    "messages": [],
}


class FakeClock:
    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingWriteTarget:
    def __init__(self, failures: int = 0, message: str = "API call to storage failed") -> None:
        self.failures = failures
        self.message = message
        self.writes: List[Dict[str, Any]] = []

    async def write(self, instance_id: str, payload: Mapping[str, Any]) -> None:
        self.writes.append({"instance_id": instance_id, **payload})
        if len(self.writes) <= self.failures:
            raise RuntimeError(self.message)


def fast_workflow_config(**overrides: Any) -> WorkflowConfig:
    values: Dict[str, Any] = {
        "fetch_delay_seconds": 0,
        "sleep_seconds": 0,
        "approval_timeout_seconds": 5,
        "write_retries": RetryConfig(limit=2, delay_seconds=0, backoff="constant"),
    }
    values.update(overrides)
    return WorkflowConfig(**values)


def mock_api_client(payload: Any = API_PAYLOAD, status_code: int = 200) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def parse_frames(frames: List[str]) -> List[Dict[str, Any]]:
    return [json.loads(frame[len("data: "):]) for frame in frames if frame.startswith("data: ")]
