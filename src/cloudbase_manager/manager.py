from __future__ import annotations

from .client import CloudApiClient, CloudService
from .config import ManagerConfig, load_config
from .environment import Environment
from .functions import SCF_SERVICE, SCF_VERSION, VPC_SERVICE, VPC_VERSION, FunctionService


TCB_SERVICE = "tcb"
TCB_VERSION = "2018-06-08"


class CloudBaseManager:
    def __init__(self, config: ManagerConfig, client: CloudApiClient, environment: Environment) -> None:
        self.config = config
        self.client = client
        self.environment = environment
        self.functions = FunctionService(
            environment,
            CloudService(client, SCF_SERVICE, SCF_VERSION),
            CloudService(client, VPC_SERVICE, VPC_VERSION),
            retry_delay=config.retry_delay_seconds,
            poll_interval=config.poll_interval_seconds,
        )

    def common_service(self, service: str = TCB_SERVICE, version: str = TCB_VERSION) -> CloudService:
        return CloudService(self.client, service, version)

    async def close(self) -> None:
        await self.client.close()


def create_manager(
    config: ManagerConfig | None = None,
    client: CloudApiClient | None = None,
    namespace: str | None = None,
) -> CloudBaseManager:
    runtime_config = config or load_config()
    runtime_client = client or CloudApiClient(runtime_config)
    environment = Environment(
        runtime_config.env_id,
        CloudService(runtime_client, TCB_SERVICE, TCB_VERSION),
        namespace=namespace,
    )
    return CloudBaseManager(runtime_config, runtime_client, environment)


_manager: CloudBaseManager | None = None


def init(config: ManagerConfig | None = None) -> CloudBaseManager:
    """Return the process-wide manager; later calls ignore ``config``."""
    global _manager
    if _manager is None:
        _manager = create_manager(config)
    return _manager


def reset() -> CloudBaseManager | None:
    global _manager
    previous, _manager = _manager, None
    return previous
