from __future__ import annotations

import asyncio
import itertools
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from shared.config import FlowtestConfig, load_config
from shared.credential_env import CredentialEnvironment
from shared.errors import ApiError


class FakeEngineClient:
    """In-memory engine that records every call and can be told to fail."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, str, Any]] = []
        self.workflows: Dict[str, Dict[str, Any]] = {}
        self.credentials: Dict[str, Dict[str, Any]] = {}
        self.connected = False
        self.connect_count = 0
        self.disconnect_count = 0
        self.execute_result: Any = {"data": {"name": "ok"}}
        self.execute_hook: Optional[Callable[[str, Any], Any]] = None
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self._ids = itertools.count(1)

    def fail(self, method: str, path_prefix: str, error: Optional[Exception] = None) -> None:
        self.failures[(method, path_prefix)] = error or ApiError(500, "Internal Server Error", "boom")

    def _check_failure(self, method: str, path: str) -> None:
        for (fail_method, prefix), error in self.failures.items():
            if fail_method == method and path.startswith(prefix):
                raise error

    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connect_count += 1
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_count += 1
        self.connected = False

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append(("GET", path, params))
        self._check_failure("GET", path)
        if path == "/workflows":
            return {"data": list(self.workflows.values()), "nextCursor": None}
        if path.startswith("/workflows/"):
            return self.workflows[path.split("/")[2]]
        return None

    async def post(self, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append(("POST", path, body))
        self._check_failure("POST", path)
        if path == "/workflows":
            workflow_id = f"wf-{next(self._ids)}"
            self.workflows[workflow_id] = {"id": workflow_id, "active": False, **body}
            return self.workflows[workflow_id]
        if path == "/credentials":
            credential_id = f"cred-{next(self._ids)}"
            self.credentials[credential_id] = {"id": credential_id, **body}
            return {"id": credential_id, "name": body["name"], "type": body["type"]}
        if path.endswith("/activate"):
            workflow = self.workflows[path.split("/")[2]]
            workflow["active"] = True
            return workflow
        if path.endswith("/execute"):
            workflow_id = path.split("/")[2]
            if self.execute_hook is not None:
                result = self.execute_hook(workflow_id, body)
                if asyncio.iscoroutine(result):
                    result = await result
                return result
            return self.execute_result
        return None

    async def put(self, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append(("PUT", path, body))
        self._check_failure("PUT", path)
        workflow = self.workflows[path.split("/")[2]]
        workflow.update(body)
        return workflow

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append(("DELETE", path, None))
        self._check_failure("DELETE", path)
        _, collection, resource_id = path.split("/")
        store = self.workflows if collection == "workflows" else self.credentials
        store.pop(resource_id, None)
        return None

    def paths(self, method: str) -> List[str]:
        return [path for m, path, _ in self.calls if m == method]


@pytest.fixture
def engine() -> FakeEngineClient:
    return FakeEngineClient()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., FlowtestConfig]:
    def _make(**overrides: Any) -> FlowtestConfig:
        values: Dict[str, Any] = {
            "_env_file": None,
            "reporter": "none",
            "templates_dir": str(tmp_path / "templates"),
            "tests_dir": str(tmp_path / "workflow-tests"),
            "env_path": None,
        }
        values.update(overrides)
        return load_config(**values)

    return _make


@pytest.fixture
def config(make_config) -> FlowtestConfig:
    return make_config()


@pytest.fixture
def credential_env() -> CredentialEnvironment:
    return CredentialEnvironment(
        {
            "N8N_CREDENTIAL_API_TYPE": "httpBasicAuth",
            "N8N_CREDENTIAL_API_USERNAME": "alice",
            "N8N_CREDENTIAL_API_PASSWORD": "s3cret",
            "SLACK_TOKEN": "xoxb-123",
        }
    )


@pytest.fixture
def write_template(tmp_path: Path) -> Callable[[str, Dict[str, Any]], Path]:
    def _write(name: str, workflow: Dict[str, Any]) -> Path:
        directory = tmp_path / "templates"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{name}.json"
        path.write_text(json.dumps(workflow), encoding="utf-8")
        return path

    return _write


def linear_workflow(name: str = "Linear") -> Dict[str, Any]:
    """Manual trigger -> Set -> HTTP request, fully connected."""
    return {
        "name": name,
        "nodes": [
            {"id": "1", "name": "Start", "type": "n8n-nodes-base.manualTrigger", "position": [0, 0], "parameters": {}},
            {"id": "2", "name": "Set", "type": "n8n-nodes-base.set", "position": [200, 0], "parameters": {}},
            {"id": "3", "name": "HTTP", "type": "n8n-nodes-base.httpRequest", "position": [400, 0], "parameters": {}},
        ],
        "connections": {
            "Start": {"main": [[{"node": "Set", "type": "main", "index": 0}]]},
            "Set": {"main": [[{"node": "HTTP", "type": "main", "index": 0}]]},
        },
        "settings": {"executionOrder": "v1"},
    }


@pytest.fixture
def workflow_factory() -> Callable[..., Dict[str, Any]]:
    return linear_workflow


@pytest.fixture
def simple_workflow() -> Dict[str, Any]:
    return linear_workflow()
