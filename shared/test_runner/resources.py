"""
Creation and teardown of the remote credentials and workflows a test needs.

Creation order is credentials, then workflows (workflows may reference the
credentials). Teardown runs in the opposite order. ``ResourceHandles`` is
filled in place as each resource is created, so when provisioning fails
halfway the caller still knows exactly what to delete.
"""
from typing import Any, Dict, Optional, Type

from shared.config import FlowtestConfig
from shared.credential_env import CredentialEnvironment, remap_credential_fields
from shared.errors import CredentialError, FlowtestError, ResourceProvisioningError, WorkflowError
from shared.logger import get_logger
from shared.test_runner.models import CredentialSpec, ResourceHandles, TestCase, WorkflowSpec
from workflow_core.manager import WorkflowManager
from workflow_core.templates import TemplateStore, instantiate

logger = get_logger(__name__)


def _resource_id(created: Any, kind: str, name: str, error_cls: Type[FlowtestError]) -> str:
    if isinstance(created, dict) and created.get("id") is not None:
        return str(created["id"])
    raise error_cls(f"Engine returned no id for {kind} {name}", {"response": created})


class ResourceManager:
    def __init__(
        self,
        workflow_manager: WorkflowManager,
        config: FlowtestConfig,
        templates: Optional[TemplateStore] = None,
        credential_env: Optional[CredentialEnvironment] = None,
    ) -> None:
        self.workflow_manager = workflow_manager
        self.config = config
        self.templates = templates or workflow_manager.templates
        self.credential_env = credential_env or CredentialEnvironment.from_config(config)

    def resolve_workflow(self, spec: WorkflowSpec) -> Dict[str, Any]:
        """Build the workflow definition for ``spec`` from its template or inline graph."""
        name = spec.name or spec.template_name or "workflow"
        if spec.template_name:
            return self.templates.instantiate(spec.template_name, name, spec.settings)
        return instantiate(
            {"nodes": spec.nodes or [], "connections": spec.connections or {}},
            name,
            spec.settings,
        )

    async def _create_credential(self, spec: CredentialSpec, handles: ResourceHandles) -> None:
        name = spec.name or ""
        resolved = self.credential_env.resolve(name, spec.type, spec.data, spec.env_prefix)
        data = remap_credential_fields(resolved.type, resolved.data, self.config.engine_version)
        try:
            created = await self.workflow_manager.create_credential(name, resolved.type, data)
        except FlowtestError as e:
            raise CredentialError(f"Failed to create credential {name}: {e.message}") from e
        handles.credential_ids[name] = _resource_id(created, "credential", name, CredentialError)
        logger.info(f"Created credential {name} ({handles.credential_ids[name]})")

    async def _create_workflow(self, spec: WorkflowSpec, handles: ResourceHandles) -> None:
        definition = self.resolve_workflow(spec)
        name = definition["name"]
        try:
            created = await self.workflow_manager.create_workflow(definition)
        except FlowtestError as e:
            raise WorkflowError(f"Failed to create workflow {name}: {e.message}") from e

        workflow_id = _resource_id(created, "workflow", name, WorkflowError)
        handles.workflow_ids[name] = workflow_id
        if spec.is_primary:
            handles.primary_workflow_id = workflow_id
        logger.info(f"Created workflow {name} ({workflow_id})")

        if spec.activate:
            try:
                await self.workflow_manager.activate_workflow(workflow_id)
            except FlowtestError as e:
                raise WorkflowError(f"Failed to activate workflow {name}: {e.message}") from e
            logger.info(f"Activated workflow {name}")

    async def create_resources(
        self,
        test_case: TestCase,
        handles: Optional[ResourceHandles] = None,
    ) -> ResourceHandles:
        """
        Create every credential, then every workflow, of ``test_case``.

        Raises:
            ResourceProvisioningError: On the first failure; ``.handles`` lists
                what was created before it and ``__cause__`` is the
                ``CredentialError`` or ``WorkflowError``.
        """
        handles = handles if handles is not None else ResourceHandles()
        try:
            for credential in test_case.credentials:
                await self._create_credential(credential, handles)
            for workflow in test_case.workflows:
                await self._create_workflow(workflow, handles)
        except (CredentialError, WorkflowError) as e:
            raise ResourceProvisioningError(e.message, handles) from e
        return handles

    async def cleanup_resources(self, handles: ResourceHandles) -> None:
        """Delete workflows, then credentials. Failures are logged, never raised."""
        for name, workflow_id in list(handles.workflow_ids.items()):
            try:
                await self.workflow_manager.delete_workflow(workflow_id)
                logger.info(f"Deleted workflow {name} ({workflow_id})")
            except Exception as e:
                logger.warning(f"Failed to delete workflow {name} ({workflow_id}): {e}", exc_info=True)

        for name, credential_id in list(handles.credential_ids.items()):
            try:
                await self.workflow_manager.delete_credential(credential_id)
                logger.info(f"Deleted credential {name} ({credential_id})")
            except Exception as e:
                logger.warning(f"Failed to delete credential {name} ({credential_id}): {e}", exc_info=True)


__all__ = ["ResourceManager"]
