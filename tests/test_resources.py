from __future__ import annotations

import pytest

from shared.errors import ApiError, CredentialError, ResourceProvisioningError, WorkflowError
from shared.test_runner.models import ResourceHandles, TestCase, WorkflowSpec
from shared.test_runner.resources import ResourceManager
from workflow_core.manager import WorkflowManager
from workflow_core.templates import TemplateStore


@pytest.fixture
def resource_manager(engine, config, credential_env) -> ResourceManager:
    workflow_manager = WorkflowManager(engine, TemplateStore(config.templates_dir))
    return ResourceManager(workflow_manager, config, credential_env=credential_env)


def make_case(**overrides) -> TestCase:
    data = {
        "name": "provisioning",
        "credentials": [{"name": "API"}],
        "workflows": [
            {"name": "helper", "templateName": "linear"},
            {"name": "main", "templateName": "linear", "isPrimary": True},
        ],
    }
    data.update(overrides)
    return TestCase.model_validate(data)


@pytest.mark.asyncio
async def test_credentials_are_created_before_workflows(engine, resource_manager, write_template, simple_workflow):
    write_template("linear", simple_workflow)

    handles = await resource_manager.create_resources(make_case())

    assert engine.paths("POST") == ["/credentials", "/workflows", "/workflows"]
    assert handles.credential_ids == {"API": "cred-1"}
    assert handles.workflow_ids == {"helper": "wf-2", "main": "wf-3"}
    assert handles.primary_workflow_id == "wf-3"


@pytest.mark.asyncio
async def test_credential_data_is_remapped_for_engine(engine, resource_manager, write_template, simple_workflow):
    write_template("linear", simple_workflow)

    await resource_manager.create_resources(make_case())

    body = engine.calls[0][2]
    assert body == {
        "name": "API",
        "type": "httpBasicAuth",
        "data": {"user": "alice", "password": "s3cret"},
    }


@pytest.mark.asyncio
async def test_engine_version_gates_remapping(engine, make_config, credential_env, write_template, simple_workflow):
    write_template("linear", simple_workflow)
    config = make_config(engine_version="0.200.0")
    workflow_manager = WorkflowManager(engine, TemplateStore(config.templates_dir))
    manager = ResourceManager(workflow_manager, config, credential_env=credential_env)
    case = make_case(credentials=[{"name": "bearer", "type": "httpBearerAuth", "data": {"bearer_token": "t"}}])

    await manager.create_resources(case)

    assert engine.calls[0][2]["data"] == {"bearer_token": "t"}


@pytest.mark.asyncio
async def test_workflow_payload_uses_template_and_name(engine, resource_manager, write_template, simple_workflow):
    template = dict(simple_workflow, id="old-id", active=True, createdAt="yesterday")
    write_template("linear", template)
    case = make_case(
        credentials=[],
        workflows=[{"name": "main", "templateName": "linear", "isPrimary": True, "settings": {"timezone": "UTC"}}],
    )

    await resource_manager.create_resources(case)

    body = engine.calls[0][2]
    assert body["name"] == "main"
    assert body["settings"] == {"executionOrder": "v1", "timezone": "UTC"}
    assert set(body) == {"name", "nodes", "connections", "settings"}


@pytest.mark.asyncio
async def test_inline_workflow(engine, resource_manager, simple_workflow):
    case = make_case(
        credentials=[],
        workflows=[
            {
                "name": "inline",
                "nodes": simple_workflow["nodes"],
                "connections": simple_workflow["connections"],
                "isPrimary": True,
            }
        ],
    )

    handles = await resource_manager.create_resources(case)

    assert handles.primary_workflow_id == "wf-1"
    assert engine.calls[0][2]["nodes"] == simple_workflow["nodes"]


@pytest.mark.asyncio
async def test_activation(engine, resource_manager, write_template, simple_workflow):
    write_template("linear", simple_workflow)
    case = make_case(credentials=[], workflows=[{"name": "main", "templateName": "linear", "isPrimary": True, "activate": True}])

    await resource_manager.create_resources(case)

    assert engine.paths("POST") == ["/workflows", "/workflows/wf-1/activate"]
    assert engine.workflows["wf-1"]["active"] is True


@pytest.mark.asyncio
async def test_failure_keeps_partial_handles(engine, resource_manager, write_template, simple_workflow):
    write_template("linear", simple_workflow)
    engine.fail("POST", "/workflows")

    with pytest.raises(ResourceProvisioningError) as excinfo:
        await resource_manager.create_resources(make_case())

    error = excinfo.value
    assert error.handles.credential_ids == {"API": "cred-1"}
    assert error.handles.workflow_ids == {}
    assert isinstance(error.__cause__, WorkflowError)
    assert error.message == "Workflow error: Failed to create workflow helper: API error (500): boom"


@pytest.mark.asyncio
async def test_handles_argument_is_filled_in_place(engine, resource_manager, write_template, simple_workflow):
    write_template("linear", simple_workflow)
    handles = ResourceHandles()
    engine.fail("POST", "/workflows/wf-3/activate", ApiError(400, "Bad Request", "cannot activate"))
    case = make_case(
        workflows=[
            {"name": "helper", "templateName": "linear"},
            {"name": "main", "templateName": "linear", "isPrimary": True, "activate": True},
        ]
    )

    with pytest.raises(ResourceProvisioningError):
        await resource_manager.create_resources(case, handles)

    assert handles.workflow_ids == {"helper": "wf-2", "main": "wf-3"}
    assert handles.primary_workflow_id == "wf-3"


@pytest.mark.asyncio
async def test_missing_template(engine, resource_manager):
    with pytest.raises(ResourceProvisioningError) as excinfo:
        await resource_manager.create_resources(make_case(credentials=[]))

    assert "Template not found: linear" in excinfo.value.message
    assert engine.calls == []


@pytest.mark.asyncio
async def test_missing_environment_credential(engine, resource_manager):
    case = make_case(credentials=[{"name": "UNKNOWN"}])

    with pytest.raises(ResourceProvisioningError) as excinfo:
        await resource_manager.create_resources(case)

    assert isinstance(excinfo.value.__cause__, CredentialError)
    assert engine.calls == []


@pytest.mark.asyncio
async def test_response_without_id(engine, resource_manager, write_template, simple_workflow):
    write_template("linear", simple_workflow)

    async def no_id(path, body=None, params=None):
        return {}

    engine.post = no_id

    with pytest.raises(ResourceProvisioningError) as excinfo:
        await resource_manager.create_resources(make_case())

    assert isinstance(excinfo.value.__cause__, CredentialError)
    assert "Engine returned no id for credential API" in excinfo.value.message


@pytest.mark.asyncio
async def test_cleanup_deletes_workflows_then_credentials(engine, resource_manager):
    handles = ResourceHandles(
        workflow_ids={"helper": "wf-2", "main": "wf-3"},
        credential_ids={"API": "cred-1"},
    )

    await resource_manager.cleanup_resources(handles)

    assert engine.paths("DELETE") == ["/workflows/wf-2", "/workflows/wf-3", "/credentials/cred-1"]


@pytest.mark.asyncio
async def test_cleanup_continues_after_failure(engine, resource_manager):
    engine.fail("DELETE", "/workflows/wf-2")
    handles = ResourceHandles(
        workflow_ids={"helper": "wf-2", "main": "wf-3"},
        credential_ids={"API": "cred-1"},
    )

    await resource_manager.cleanup_resources(handles)

    assert engine.paths("DELETE") == ["/workflows/wf-2", "/workflows/wf-3", "/credentials/cred-1"]


def test_resolve_workflow_falls_back_to_template_name(resource_manager, write_template, simple_workflow):
    write_template("linear", simple_workflow)

    definition = resource_manager.resolve_workflow(WorkflowSpec(template_name="linear"))

    assert definition["name"] == "linear"


def test_templates_come_from_the_workflow_manager(engine, config, credential_env, tmp_path, simple_workflow):
    store = TemplateStore(tmp_path / "shared-templates")
    store.save("linear", simple_workflow)
    manager = ResourceManager(WorkflowManager(engine, store), config, credential_env=credential_env)

    definition = manager.resolve_workflow(WorkflowSpec(name="main", template_name="linear"))

    assert manager.templates is store
    assert definition["name"] == "main"
