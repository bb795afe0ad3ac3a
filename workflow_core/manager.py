"""
Workflow, execution and credential operations against the engine REST API.

``WorkflowManager`` is a thin layer over an ``EngineClient``: it builds the
request paths, strips workflows down to their writable fields and unwraps the
engine's ``{"data": ...}`` list envelopes. Resilience (rate limiting and
retries) is the client's concern.
"""
import asyncio
import json
import re
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from shared.engine_client import EngineClient
from shared.errors import OperationTimeoutError, WorkflowError
from shared.logger import get_logger
from workflow_core.schema import WorkflowDefinition, to_engine_payload
from workflow_core.templates import TemplateStore
from workflow_core.validation import assert_workflow_valid

logger = get_logger(__name__)

_ENVELOPE_KEYS = {"data", "nextCursor"}
FINISHED_STATUSES = {"success", "error", "crashed", "canceled"}


def unwrap(response: Any) -> Any:
    """Return ``response["data"]`` for list envelopes, the response itself otherwise."""
    if isinstance(response, dict) and "data" in response and set(response) <= _ENVELOPE_KEYS:
        return response["data"]
    return response


def _is_finished(execution: Any) -> bool:
    if not isinstance(execution, dict):
        return False
    return bool(execution.get("finished")) or execution.get("status") in FINISHED_STATUSES


class WorkflowManager:
    def __init__(self, client: EngineClient, templates: Optional[TemplateStore] = None) -> None:
        self.client = client
        self.templates = templates or TemplateStore()

    async def connect(self) -> None:
        await self.client.connect()

    async def disconnect(self) -> None:
        await self.client.disconnect()

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    async def list_workflows(self, active: Optional[bool] = None) -> List[Dict[str, Any]]:
        params = {"active": str(active).lower()} if active is not None else None
        return unwrap(await self.client.get("/workflows", params)) or []

    async def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.get(f"/workflows/{workflow_id}"))

    async def create_workflow(self, workflow: Union[Mapping[str, Any], WorkflowDefinition]) -> Dict[str, Any]:
        payload = to_engine_payload(workflow)
        created = unwrap(await self.client.post("/workflows", payload))
        logger.debug(f"Created workflow {payload.get('name')} ({created.get('id') if created else None})")
        return created

    async def update_workflow(self, workflow_id: str, workflow: Mapping[str, Any]) -> Dict[str, Any]:
        return unwrap(await self.client.put(f"/workflows/{workflow_id}", to_engine_payload(workflow)))

    async def delete_workflow(self, workflow_id: str) -> bool:
        await self.client.delete(f"/workflows/{workflow_id}")
        return True

    async def activate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.post(f"/workflows/{workflow_id}/activate", {}))

    async def deactivate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.post(f"/workflows/{workflow_id}/deactivate", {}))

    async def execute_workflow(self, workflow_id: str, data: Any = None) -> Any:
        """Run a workflow and return its output as-is; output is user data and is never unwrapped."""
        return await self.client.post(f"/workflows/{workflow_id}/execute", data if data is not None else {})

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    async def get_workflow_executions(self, workflow_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        return unwrap(await self.client.get(f"/workflows/{workflow_id}/executions", {"limit": limit})) or []

    async def get_execution(self, execution_id: str) -> Dict[str, Any]:
        return unwrap(await self.client.get(f"/executions/{execution_id}"))

    async def wait_for_execution(
        self,
        execution_id: str,
        timeout: float = 30.0,
        interval: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> Dict[str, Any]:
        """Poll an execution until it finishes. ``timeout`` and ``interval`` are seconds."""
        started = time.monotonic()
        while time.monotonic() - started < timeout:
            execution = await self.get_execution(execution_id)
            if _is_finished(execution):
                return execution
            await sleep(interval)
        raise OperationTimeoutError(f"Wait for execution {execution_id}", timeout)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def create_credential(self, name: str, credential_type: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        body = {"name": name, "type": credential_type, "data": dict(data)}
        return unwrap(await self.client.post("/credentials", body))

    async def delete_credential(self, credential_id: str) -> bool:
        await self.client.delete(f"/credentials/{credential_id}")
        return True

    # ------------------------------------------------------------------
    # Templates and files
    # ------------------------------------------------------------------

    async def create_workflow_from_template(
        self,
        template_name: str,
        workflow_name: str,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await self.create_workflow(self.templates.instantiate(template_name, workflow_name, settings))

    def load_workflow_file(self, path: Union[str, Path]) -> Dict[str, Any]:
        path = Path(path)
        if not path.is_file():
            raise WorkflowError(f"Workflow file not found: {path}")
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise WorkflowError(f"Failed to parse workflow file: {e}", {"path": str(path)}) from e

    async def import_workflow(self, path: Union[str, Path]) -> Dict[str, Any]:
        """Validate a workflow JSON file and create it on the engine."""
        workflow = self.load_workflow_file(path)
        assert_workflow_valid(workflow, label=str(path))
        return await self.create_workflow(workflow)

    async def save_workflow_to_file(self, workflow_id: str, path: Optional[Union[str, Path]] = None) -> Path:
        workflow = await self.get_workflow(workflow_id)
        if path is None:
            path = Path(f"{re.sub(r'[^a-z0-9]', '_', workflow['name'], flags=re.IGNORECASE).lower()}.json")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(workflow, indent=2), encoding="utf-8")
        return path


__all__ = ["FINISHED_STATUSES", "WorkflowManager", "unwrap"]
