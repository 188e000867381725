from __future__ import annotations

import httpx
import pytest

from cloudbase_manager import manager
from cloudbase_manager.client import CloudApiClient
from cloudbase_manager.config import ConfigError, ManagerConfig, load_config, make_credentials


ENV_VARS = (
    "TENCENTCLOUD_SECRETID",
    "TENCENTCLOUD_SECRETKEY",
    "TENCENTCLOUD_SESSIONTOKEN",
    "TCB_ENV_ID",
    "TENCENTCLOUD_REGION",
    "TCB_PROXY",
    "TCB_INTERNAL_ENDPOINT",
    "TCB_TIMEOUT_SECONDS",
    "TCB_RETRY_DELAY_SECONDS",
    "TCB_POLL_INTERVAL_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_load_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TENCENTCLOUD_SECRETID", "AKIDexample")
    monkeypatch.setenv("TENCENTCLOUD_SECRETKEY", "secret")
    monkeypatch.setenv("TENCENTCLOUD_SESSIONTOKEN", "token")
    monkeypatch.setenv("TCB_ENV_ID", "env-1")
    monkeypatch.setenv("TCB_INTERNAL_ENDPOINT", "yes")
    monkeypatch.setenv("TCB_RETRY_DELAY_SECONDS", "0")

    config = load_config()

    assert config.credentials.secret_id == "AKIDexample"
    assert config.credentials.token == "token"
    assert config.env_id == "env-1"
    assert config.internal_endpoint is True
    assert config.timeout_seconds == 15.0
    assert config.retry_delay_seconds == 0.0
    assert config.poll_interval_seconds == 1.0


def test_missing_credentials_are_rejected() -> None:
    with pytest.raises(ConfigError):
        load_config()


def test_secret_id_and_key_must_be_a_pair(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TENCENTCLOUD_SECRETID", "AKIDexample")

    with pytest.raises(ConfigError, match="pair"):
        load_config()
    with pytest.raises(ConfigError, match="pair"):
        make_credentials(None, "secret")


def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TENCENTCLOUD_SECRETID", "AKIDexample")
    monkeypatch.setenv("TENCENTCLOUD_SECRETKEY", "secret")

    monkeypatch.setenv("TCB_INTERNAL_ENDPOINT", "maybe")
    with pytest.raises(ConfigError):
        load_config()

    monkeypatch.setenv("TCB_INTERNAL_ENDPOINT", "false")
    monkeypatch.setenv("TCB_TIMEOUT_SECONDS", "0")
    with pytest.raises(ConfigError):
        load_config()


@pytest.mark.asyncio
async def test_process_wide_manager_can_be_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TENCENTCLOUD_SECRETID", "AKIDexample")
    monkeypatch.setenv("TENCENTCLOUD_SECRETKEY", "secret")
    manager.reset()

    first = manager.init()
    assert manager.init() is first

    previous = manager.reset()
    assert previous is first
    await previous.close()

    second = manager.init()
    assert second is not first
    await manager.reset().close()


@pytest.mark.asyncio
async def test_create_manager_wires_function_service() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Response": {"RequestId": "req", "Functions": []}})

    config = ManagerConfig(credentials=make_credentials("AKIDexample", "secret"), env_id="env-1")
    client = CloudApiClient(config, transport=httpx.MockTransport(handler))
    built = manager.create_manager(config, client=client, namespace="ns-1")

    assert await built.functions.list_functions() == []
    assert built.common_service().service == "tcb"
    await built.close()
