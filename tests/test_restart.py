import pytest
from unittest.mock import MagicMock

import docker


def make_store_with(container_id="c1", name="web", image="nginx:latest"):
    from dockrevive.models import ContainerConfig
    from dockrevive.state import ConfigStore

    store = ConfigStore()
    store.upsert(ContainerConfig(
        container_id=container_id,
        name=name,
        image=image,
        runtime_config={
            "Image": image,
            "Hostname": "c1host",
            "Env": ["MODE=prod"],
            "Cmd": ["nginx"],
            "Labels": {"app": "web"},
            "Healthcheck": {"Test": ["NONE"]},
            "ExposedPorts": None,
        },
        host_config={"PortBindings": {"80/tcp": [{"HostIp": "", "HostPort": "8080"}]}},
    ))
    return store


def make_engine(new_id="c2", running=True):
    engine = MagicMock()
    engine.create_container.return_value = new_id
    engine.inspect_container.return_value = {
        "Id": new_id,
        "State": {"Running": running, "Status": "running" if running else "exited"},
        "NetworkSettings": {"IPAddress": "172.17.0.9"},
    }
    return engine


def fast_config(stop_timeout=10):
    from dockrevive.config import RestartConfig

    return RestartConfig(stop_timeout_seconds=stop_timeout, settle_delay_seconds=0, verify_delay_seconds=0)


def test_build_create_spec_keeps_preserved_fields_only():
    from dockrevive.services.restart import build_create_spec

    store = make_store_with()
    spec = build_create_spec(store.get("c1"))

    assert spec["Image"] == "nginx:latest"
    assert spec["Hostname"] == "c1host"
    assert spec["Env"] == ["MODE=prod"]
    assert spec["Labels"] == {"app": "web"}
    assert spec["HostConfig"]["PortBindings"]["80/tcp"][0]["HostPort"] == "8080"
    assert "Healthcheck" not in spec
    assert "ExposedPorts" not in spec


@pytest.mark.asyncio
async def test_restart_recreates_and_migrates_store():
    from dockrevive.services.restart import RestartWorkflow

    store = make_store_with()
    engine = make_engine(new_id="c2")
    workflow = RestartWorkflow(engine, store, fast_config())

    result = await workflow.restart("c1")

    engine.stop_container.assert_called_once_with("c1", 10)
    engine.kill_container.assert_not_called()
    engine.remove_container.assert_called_once_with("c1", True)
    name, spec = engine.create_container.call_args[0]
    assert name == "web"
    assert spec["Image"] == "nginx:latest"
    engine.start_container.assert_called_once_with("c2")

    assert result.container_id == "c2"
    assert store.get("c1") is None
    migrated = store.get("c2")
    assert migrated.name == "web"
    assert migrated.image == "nginx:latest"
    assert migrated.runtime_config["Env"] == ["MODE=prod"]
    assert migrated.ip_address == "172.17.0.9"


@pytest.mark.asyncio
async def test_restart_without_stored_config_fails():
    from dockrevive.errors import WorkflowError
    from dockrevive.services.restart import RestartWorkflow
    from dockrevive.state import ConfigStore

    engine = make_engine()
    workflow = RestartWorkflow(engine, ConfigStore(), fast_config())

    with pytest.raises(WorkflowError) as exc_info:
        await workflow.restart("ghost")

    assert exc_info.value.container_id == "ghost"
    engine.stop_container.assert_not_called()


@pytest.mark.asyncio
async def test_stop_failure_escalates_to_kill():
    from dockrevive.services.restart import RestartWorkflow

    store = make_store_with()
    engine = make_engine()
    engine.stop_container.side_effect = docker.errors.APIError("stop failed")
    workflow = RestartWorkflow(engine, store, fast_config())

    await workflow.restart("c1")

    engine.kill_container.assert_called_once_with("c1")
    assert store.get("c2") is not None


@pytest.mark.asyncio
async def test_stop_timeout_escalates_to_kill():
    import time
    from dockrevive.services.restart import RestartWorkflow

    store = make_store_with()
    engine = make_engine()
    engine.stop_container.side_effect = lambda container_id, timeout: time.sleep(0.5)
    workflow = RestartWorkflow(engine, store, fast_config(stop_timeout=0.05))

    await workflow.restart("c1")

    engine.kill_container.assert_called_once_with("c1")


@pytest.mark.asyncio
async def test_stop_and_kill_failing_on_running_container_is_an_error():
    from dockrevive.errors import WorkflowError
    from dockrevive.services.restart import RestartWorkflow

    store = make_store_with()
    engine = make_engine()
    engine.stop_container.side_effect = docker.errors.APIError("stop failed")
    engine.kill_container.side_effect = docker.errors.APIError("kill failed")
    engine.inspect_container.return_value = {"State": {"Running": True}}
    workflow = RestartWorkflow(engine, store, fast_config())

    with pytest.raises(WorkflowError):
        await workflow.restart("c1")

    engine.remove_container.assert_not_called()
    assert store.get("c1") is not None


@pytest.mark.asyncio
async def test_kill_failure_on_stopped_container_continues():
    from dockrevive.services.restart import RestartWorkflow

    store = make_store_with()
    engine = make_engine()
    engine.stop_container.side_effect = docker.errors.APIError("stop failed")
    engine.kill_container.side_effect = docker.errors.APIError("not running")
    engine.inspect_container.side_effect = [
        {"State": {"Running": False}},
        {"Id": "c2", "State": {"Running": True}, "NetworkSettings": {}},
    ]
    workflow = RestartWorkflow(engine, store, fast_config())

    result = await workflow.restart("c1")

    assert result.container_id == "c2"
    engine.remove_container.assert_called_once()


@pytest.mark.asyncio
async def test_remove_failure_leaves_store_untouched():
    from dockrevive.errors import WorkflowError
    from dockrevive.services.restart import RestartWorkflow

    store = make_store_with()
    engine = make_engine()
    engine.remove_container.side_effect = docker.errors.APIError("in use")
    workflow = RestartWorkflow(engine, store, fast_config())

    with pytest.raises(WorkflowError):
        await workflow.restart("c1")

    engine.create_container.assert_not_called()
    assert store.get("c1") is not None


@pytest.mark.asyncio
async def test_create_failure_is_workflow_error():
    from dockrevive.errors import WorkflowError
    from dockrevive.services.restart import RestartWorkflow

    store = make_store_with()
    engine = make_engine()
    engine.create_container.side_effect = docker.errors.APIError("name conflict")
    workflow = RestartWorkflow(engine, store, fast_config())

    with pytest.raises(WorkflowError) as exc_info:
        await workflow.restart("c1")

    assert "create" in str(exc_info.value)
    engine.start_container.assert_not_called()


@pytest.mark.asyncio
async def test_start_failure_is_workflow_error():
    from dockrevive.errors import WorkflowError
    from dockrevive.services.restart import RestartWorkflow

    store = make_store_with()
    engine = make_engine()
    engine.start_container.side_effect = docker.errors.APIError("port in use")
    workflow = RestartWorkflow(engine, store, fast_config())

    with pytest.raises(WorkflowError):
        await workflow.restart("c1")

    assert store.get("c2") is None


@pytest.mark.asyncio
async def test_not_running_after_start_is_verification_error():
    from dockrevive.errors import VerificationError
    from dockrevive.services.restart import RestartWorkflow

    store = make_store_with()
    engine = make_engine(running=False)
    workflow = RestartWorkflow(engine, store, fast_config())

    with pytest.raises(VerificationError):
        await workflow.restart("c1")

    assert store.get("c2") is None
    assert store.get("c1") is not None


@pytest.mark.asyncio
async def test_inspect_failure_after_start_is_verification_error():
    from dockrevive.errors import VerificationError
    from dockrevive.services.restart import RestartWorkflow

    store = make_store_with()
    engine = make_engine()
    engine.inspect_container.side_effect = docker.errors.NotFound("gone")
    workflow = RestartWorkflow(engine, store, fast_config())

    with pytest.raises(VerificationError):
        await workflow.restart("c1")


@pytest.mark.asyncio
async def test_restart_in_background_logs_instead_of_raising(caplog):
    import logging
    from dockrevive.services.restart import RestartWorkflow
    from dockrevive.state import ConfigStore

    workflow = RestartWorkflow(make_engine(), ConfigStore(), fast_config())

    with caplog.at_level(logging.ERROR):
        await workflow.restart_in_background("ghost")

    assert "Restart of ghost failed" in caplog.text


@pytest.mark.asyncio
async def test_restart_in_background_returns_migrated_config():
    from dockrevive.services.restart import RestartWorkflow
    from dockrevive.state import ConfigStore

    ok = RestartWorkflow(make_engine(new_id="c2"), make_store_with(), fast_config())
    failing = RestartWorkflow(make_engine(), ConfigStore(), fast_config())

    assert (await ok.restart_in_background("c1")).container_id == "c2"
    assert await failing.restart_in_background("ghost") is None


@pytest.mark.asyncio
async def test_engine_stop_gets_configured_grace_period():
    from dockrevive.services.restart import RestartWorkflow

    engine = make_engine()
    workflow = RestartWorkflow(engine, make_store_with(), fast_config(stop_timeout=25))

    await workflow.restart("c1")

    engine.stop_container.assert_called_once_with("c1", 25)
