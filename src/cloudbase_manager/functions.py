from __future__ import annotations

import asyncio
import base64
import enum
import json
import logging
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from .client import CloudService
from .environment import Environment, FunctionContext
from .errors import CloudBaseError, PackagingFailure, ResourceConflict, ValidationFailure
from .models import (
    UNSET,
    ApiResponse,
    DeployResult,
    FunctionLogQuery,
    FunctionSpec,
    FunctionTrigger,
    LayerSpec,
    ReconcileResult,
)
from .packer import CodeType, FunctionPacker, zip_directory


logger = logging.getLogger(__name__)

T = TypeVar("T")

SCF_SERVICE = "scf"
SCF_VERSION = "2018-04-16"
VPC_SERVICE = "vpc"
VPC_VERSION = "2017-03-12"

SUPPORTED_RUNTIMES = ("Nodejs8.9", "Php7", "Java8")
DEFAULT_RUNTIME = "Nodejs8.9"
JAVA_RUNTIME = "Java8"
DEFAULT_HANDLER = "index.main"
DEFAULT_TIMEOUT = 20
DEFAULT_MEMORY_SIZE = 256
FUNCTION_ROLE = "TCB_QcsRole"
FUNCTION_STAMP = "MINI_QCBASE"
SUPPORTED_TRIGGER_TYPES = {"timer"}
DEPENDENCY_IGNORE = ["node_modules/**/*", "node_modules"]

RETRY_LIMIT = 3
RETRY_DELAY_SECONDS = 0.5
POLL_INTERVAL_SECONDS = 1.0

CODE_SECRET_PATTERN = re.compile(r"^[A-Za-z0-9+=/]{1,160}$")

DETAIL_KEYS = (
    "Status",
    "CodeInfo",
    "CodeSize",
    "Environment",
    "FunctionName",
    "Handler",
    "MemorySize",
    "ModTime",
    "Namespace",
    "Runtime",
    "Timeout",
    "Triggers",
    "VpcConfig",
)
LIST_KEYS = ("FunctionId", "FunctionName", "Runtime", "AddTime", "ModTime", "Status")


class FunctionStatus(str, enum.Enum):
    ACTIVE = "Active"
    CREATING = "Creating"
    UPDATING = "Updating"
    CREATE_FAILED = "CreateFailed"
    UPDATE_FAILED = "UpdateFailed"


PENDING_STATUSES = {FunctionStatus.CREATING.value, FunctionStatus.UPDATING.value}


def validate_runtimes(runtimes: Sequence[str]) -> None:
    if any(runtime not in SUPPORTED_RUNTIMES for runtime in runtimes):
        raise ValidationFailure(
            f"Invalid runtime value. Now only support: {', '.join(SUPPORTED_RUNTIMES)}"
        )


def validate_triggers(triggers: Sequence[FunctionTrigger]) -> None:
    for trigger in triggers:
        if trigger.type not in SUPPORTED_TRIGGER_TYPES:
            raise ValidationFailure(
                f"Unsupported trigger type [{trigger.type}]; only timer triggers are supported"
            )


def validate_function(spec: FunctionSpec, code_secret: str | None = None) -> None:
    if code_secret and not CODE_SECRET_PATTERN.match(code_secret):
        raise ValidationFailure(
            'CodeSecret must be 1-160 characters of letters, digits, "+", "=" or "/"'
        )
    if spec.runtime and spec.runtime not in SUPPORTED_RUNTIMES:
        raise ValidationFailure(
            f"{spec.name} Invalid runtime value: {spec.runtime}. "
            f"Now only support: {', '.join(SUPPORTED_RUNTIMES)}"
        )
    validate_triggers(spec.triggers)


def _flag(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def install_dependency_for(spec: FunctionSpec) -> bool:
    if spec.install_dependency is not None:
        return spec.install_dependency
    # keyed on the declared runtime; an omitted runtime does not install remotely
    return spec.runtime == DEFAULT_RUNTIME


def env_variable_params(spec: FunctionSpec) -> list[dict[str, Any]]:
    return [{"Key": key, "Value": value} for key, value in spec.env_variables.items()]


def vpc_params(spec: FunctionSpec) -> dict[str, str]:
    vpc = spec.vpc
    return {
        "SubnetId": (vpc.subnet_id if vpc else "") or "",
        "VpcId": (vpc.vpc_id if vpc else "") or "",
    }


def l5_param(spec: FunctionSpec) -> str | None:
    # null leaves the remote L5 setting untouched
    return None if spec.l5 is None else _flag(spec.l5)


class FunctionService:
    """Deploys and manages the cloud functions of one environment.

    ``create_function`` is create-or-reconcile: when the name is taken and
    ``force`` is set it creates triggers, replaces the configuration and then
    uploads the code, in that order. The sequence is not atomic; a failure
    part-way leaves the earlier steps applied and re-running it converges.
    """

    def __init__(
        self,
        environment: Environment,
        scf_service: CloudService,
        vpc_service: CloudService,
        *,
        retry_delay: float = RETRY_DELAY_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.environment = environment
        self._scf = scf_service
        self._vpc = vpc_service
        self._retry_delay = retry_delay
        self._poll_interval = poll_interval
        self._sleep = sleep

    async def _function_context(self) -> FunctionContext:
        return await self.environment.resolve()

    async def _package(
        self,
        spec: FunctionSpec,
        root_path: str | Path | None,
        install_dependency: bool,
        incremental_path: str | None = None,
    ) -> str:
        if root_path is None:
            raise ValidationFailure(f"[{spec.name}] either root_path or base64_code is required")

        ignore = [*DEPENDENCY_IGNORE, *spec.ignore] if install_dependency else list(spec.ignore)
        packer = FunctionPacker(root_path, spec.name, ignore, incremental_path)
        code_type = CodeType.JAVA_FILE if spec.runtime == JAVA_RUNTIME else CodeType.FILE
        artifact = await asyncio.to_thread(packer.build, code_type)
        if not artifact:
            raise PackagingFailure(f"[{spec.name}] function source not found under {root_path}")
        return artifact

    async def _retry(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        attempt = 0
        while True:
            try:
                return await operation()
            except CloudBaseError as exc:
                if attempt >= RETRY_LIMIT:
                    raise
                attempt += 1
                logger.warning(
                    "%s failed (%s); retry %d/%d in %.1fs",
                    description,
                    exc,
                    attempt,
                    RETRY_LIMIT,
                    self._retry_delay,
                )
                await self._sleep(self._retry_delay)

    async def _wait_function_active(self, name: str) -> dict[str, Any]:
        while True:
            detail = await self.get_function_detail(name)
            if detail.get("Status") not in PENDING_STATUSES:
                logger.info("Function %s left pending state with status %s", name, detail.get("Status"))
                return detail
            await self._sleep(self._poll_interval)

    def _create_params(
        self,
        spec: FunctionSpec,
        namespace: str,
        artifact: str,
        install_dependency: bool,
        code_secret: str | None,
    ) -> dict[str, Any]:
        vpc = vpc_params(spec)
        env_variables = env_variable_params(spec)
        return {
            "FunctionName": spec.name,
            "Namespace": namespace,
            "Code": {"ZipFile": artifact},
            "MemorySize": DEFAULT_MEMORY_SIZE,
            "Role": FUNCTION_ROLE,
            "Stamp": FUNCTION_STAMP,
            "L5Enable": l5_param(spec),
            # Environment replaces the remote variable set; omitted when empty
            "Environment": {"Variables": env_variables} if env_variables else UNSET,
            "Handler": spec.handler or DEFAULT_HANDLER,
            "Timeout": int(spec.timeout or DEFAULT_TIMEOUT),
            "Runtime": spec.runtime or DEFAULT_RUNTIME,
            "VpcConfig": vpc,
            "InstallDependency": _flag(install_dependency),
            "CodeSecret": code_secret or UNSET,
            "EipConfig": {"EipFixed": _flag(bool(vpc["SubnetId"] and vpc["VpcId"]))},
            "Layers": [layer.to_params() for layer in spec.layers] or UNSET,
        }

    async def create_function(
        self,
        spec: FunctionSpec,
        root_path: str | Path | None = None,
        force: bool = False,
        base64_code: str | None = None,
        code_secret: str | None = None,
    ) -> DeployResult:
        validate_function(spec, code_secret)
        context = await self._function_context()
        install_dependency = install_dependency_for(spec)

        artifact = base64_code or await self._package(spec, root_path, install_dependency)
        params = self._create_params(spec, context.namespace, artifact, install_dependency, code_secret)

        try:
            response = await self._scf.request("CreateFunction", params)
        except ResourceConflict as exc:
            if not force:
                raise exc.annotate(f"[{spec.name}] deploy failed: ") from exc
            logger.info("Function %s already exists; reconciling", spec.name)
            return await self._reconcile(spec, root_path, artifact, code_secret)
        except CloudBaseError as exc:
            if not force:
                raise exc.annotate(f"[{spec.name}] deploy failed: ") from exc
            raise

        logger.info("Created function %s (requestId=%s)", spec.name, response.request_id)
        await self._retry(
            lambda: self.create_function_triggers(spec.name, spec.triggers),
            f"[{spec.name}] create triggers",
        )
        if install_dependency and spec.is_wait_install:
            await self._wait_function_active(spec.name)
        return response

    async def _reconcile(
        self,
        spec: FunctionSpec,
        root_path: str | Path | None,
        artifact: str,
        code_secret: str | None,
    ) -> ReconcileResult:
        trigger_result = await self._retry(
            lambda: self.create_function_triggers(spec.name, spec.triggers),
            f"[{spec.name}] create triggers",
        )
        config_result = await self.update_function_config(spec)
        code_result = await self._retry(
            lambda: self.update_function_code(
                spec, root_path, base64_code=artifact, code_secret=code_secret
            ),
            f"[{spec.name}] update code",
        )
        return ReconcileResult(
            trigger_result=trigger_result,
            config_result=config_result,
            code_result=code_result,
        )

    async def update_function_code(
        self,
        spec: FunctionSpec,
        root_path: str | Path | None = None,
        base64_code: str | None = None,
        code_secret: str | None = None,
    ) -> ApiResponse:
        validate_function(spec, code_secret)
        context = await self._function_context()
        install_dependency = install_dependency_for(spec)

        artifact = base64_code or await self._package(spec, root_path, install_dependency)
        params = {
            "FunctionName": spec.name,
            "Namespace": context.namespace,
            "ZipFile": artifact,
            "Handler": spec.handler or DEFAULT_HANDLER,
            "InstallDependency": _flag(install_dependency),
            "CodeSecret": code_secret or UNSET,
        }

        try:
            response = await self._scf.request("UpdateFunctionCode", params)
        except CloudBaseError as exc:
            raise exc.annotate(f"[{spec.name}] code update failed: ") from exc

        if install_dependency and spec.is_wait_install:
            await self._wait_function_active(spec.name)
        return response

    async def update_function_incremental_code(
        self,
        spec: FunctionSpec,
        root_path: str | Path,
        delete_files: Sequence[str] | None = None,
        add_files: str | None = None,
    ) -> ApiResponse:
        validate_function(spec)
        context = await self._function_context()
        params: dict[str, Any] = {
            "FunctionName": spec.name,
            "Namespace": context.namespace,
        }
        if delete_files:
            params["DeleteFiles"] = list(delete_files)
        if add_files:
            params["AddFiles"] = await self._package(spec, root_path, False, incremental_path=add_files)

        return await self._scf.request("UpdateFunctionIncrementalCode", params)

    async def update_function_config(self, spec: FunctionSpec) -> ApiResponse:
        validate_function(spec)
        context = await self._function_context()
        env_variables = env_variable_params(spec)

        install_dependency = UNSET
        if spec.runtime == DEFAULT_RUNTIME:
            install_dependency = "TRUE"
        if spec.install_dependency is not None:
            install_dependency = _flag(spec.install_dependency)

        params = {
            "FunctionName": spec.name,
            "Namespace": context.namespace,
            "L5Enable": l5_param(spec),
            "Environment": {"Variables": env_variables} if env_variables else UNSET,
            # no default timeout here, an update must not reset the remote value
            "Timeout": spec.timeout or UNSET,
            "Runtime": spec.runtime or UNSET,
            "VpcConfig": vpc_params(spec),
            "InstallDependency": install_dependency,
            "Layers": [layer.to_params() for layer in spec.layers] or UNSET,
        }
        return await self._scf.request("UpdateFunctionConfiguration", params)

    async def create_function_triggers(
        self,
        name: str,
        triggers: Sequence[FunctionTrigger] | None = None,
    ) -> ApiResponse | None:
        if not triggers:
            return None
        validate_triggers(triggers)
        context = await self._function_context()

        parsed = [
            {"TriggerName": trigger.name, "Type": trigger.type, "TriggerDesc": trigger.config}
            for trigger in triggers
        ]
        return await self._scf.request(
            "BatchCreateTrigger",
            {
                "FunctionName": name,
                "Namespace": context.namespace,
                "Triggers": json.dumps(parsed, separators=(",", ":"), ensure_ascii=False),
                "Count": len(parsed),
            },
        )

    async def delete_function_trigger(self, name: str, trigger_name: str) -> ApiResponse:
        context = await self._function_context()
        return await self._scf.request(
            "DeleteTrigger",
            {
                "FunctionName": name,
                "Namespace": context.namespace,
                "TriggerName": trigger_name,
                "Type": "timer",
            },
        )

    async def get_function_detail(self, name: str, code_secret: str | None = None) -> dict[str, Any]:
        context = await self._function_context()
        response = await self._scf.request(
            "GetFunction",
            {
                "FunctionName": name,
                "Namespace": context.namespace,
                "ShowCode": "TRUE",
                "CodeSecret": code_secret or UNSET,
            },
        )

        data = {key: response.payload[key] for key in DETAIL_KEYS if key in response.payload}
        vpc_config = data.get("VpcConfig") or {}
        vpc_id = vpc_config.get("VpcId", "")
        subnet_id = vpc_config.get("SubnetId", "")

        if vpc_id and subnet_id:
            try:
                vpcs = await self._get_vpcs()
                subnets = await self._get_subnets(vpc_id)
            except CloudBaseError as exc:
                # TODO: decide whether a failed VPC lookup should surface instead of degrading
                logger.warning("VPC lookup for function %s failed, returning empty VPC info: %s", name, exc)
                data["VPC"] = {"vpc": "", "subnet": ""}
            else:
                data["VpcConfig"] = {
                    "vpc": next((item for item in vpcs if item.get("VpcId") == vpc_id), None),
                    "subnet": next((item for item in subnets if item.get("SubnetId") == subnet_id), None),
                }

        return data

    async def list_functions(self, limit: int = 20, offset: int = 0) -> list[dict[str, Any]]:
        context = await self._function_context()
        response = await self._scf.request(
            "ListFunctions",
            {"Namespace": context.namespace, "Limit": limit, "Offset": offset},
        )
        return [
            {key: function.get(key) for key in LIST_KEYS}
            for function in response.get("Functions") or []
        ]

    async def delete_function(self, name: str) -> ApiResponse:
        context = await self._function_context()
        return await self._scf.request(
            "DeleteFunction",
            {"FunctionName": name, "Namespace": context.namespace},
        )

    async def invoke_function(self, name: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        context = await self._function_context()
        request_params = {
            "FunctionName": name,
            "Namespace": context.namespace,
            "LogType": "Tail",
            "ClientContext": json.dumps(params, ensure_ascii=False) if params is not None else UNSET,
        }
        try:
            response = await self._scf.request("Invoke", request_params)
        except CloudBaseError as exc:
            raise exc.annotate(f"[{name}] invoke failed: ") from exc
        return {"RequestId": response.request_id, **(response.get("Result") or {})}

    async def copy_function(
        self,
        name: str,
        new_function_name: str,
        target_env_id: str | None = None,
        force: bool = False,
    ) -> ApiResponse:
        context = await self._function_context()
        if not name or not new_function_name:
            raise ValidationFailure("copy_function requires both name and new_function_name")
        return await self._scf.request(
            "CopyFunction",
            {
                "FunctionName": name,
                "NewFunctionName": new_function_name,
                "Namespace": context.namespace,
                "TargetNamespace": target_env_id or context.namespace,
                "Override": bool(force),
            },
        )

    async def get_function_logs(self, query: FunctionLogQuery) -> ApiResponse:
        context = await self._function_context()

        def optional(value: Any) -> Any:
            return UNSET if value is None else value

        return await self._scf.request(
            "GetFunctionLogs",
            {
                "Namespace": context.namespace,
                "FunctionName": query.name,
                "Offset": query.offset,
                "Limit": query.limit,
                "Order": optional(query.order),
                "OrderBy": optional(query.order_by),
                "StartTime": optional(query.start_time),
                "EndTime": optional(query.end_time),
                "FunctionRequestId": optional(query.request_id),
            },
        )

    async def get_function_download_url(self, name: str, code_secret: str | None = None) -> dict[str, Any]:
        context = await self._function_context()
        try:
            response = await self._scf.request(
                "GetFunctionAddress",
                {
                    "FunctionName": name,
                    "Namespace": context.namespace,
                    "CodeSecret": code_secret or UNSET,
                },
            )
        except CloudBaseError as exc:
            raise exc.annotate(f"[{name}] fetching code download url failed: ") from exc
        return {
            "Url": response.get("Url"),
            "RequestId": response.request_id,
            "CodeSha256": response.get("CodeSha256"),
        }

    async def create_layer(self, layer: LayerSpec) -> ApiResponse:
        validate_runtimes(layer.runtimes)

        if layer.base64_content:
            content = layer.base64_content
        elif layer.content_path and Path(layer.content_path).is_dir():
            archive = await asyncio.to_thread(
                zip_directory, layer.content_path, prefix=f"layer-{Path(layer.content_path).name}"
            )
            content = base64.b64encode(archive).decode("ascii")
        elif layer.content_path and Path(layer.content_path).suffix == ".zip":
            data = await asyncio.to_thread(Path(layer.content_path).read_bytes)
            content = base64.b64encode(data).decode("ascii")
        else:
            raise ValidationFailure("Layer content must be a directory or a ZIP file")

        return await self._scf.request(
            "PublishLayerVersion",
            {
                "LayerName": layer.name,
                "CompatibleRuntimes": list(layer.runtimes),
                "Content": {"ZipFile": content},
                "Description": layer.description,
                "LicenseInfo": layer.license_info,
            },
        )

    async def delete_layer_version(self, name: str, version: int) -> ApiResponse:
        return await self._scf.request("DeleteLayerVersion", {"LayerName": name, "LayerVersion": version})

    async def list_layer_versions(self, name: str, runtimes: Sequence[str] | None = None) -> ApiResponse:
        params: dict[str, Any] = {"LayerName": name}
        if runtimes:
            validate_runtimes(runtimes)
            params["CompatibleRuntime"] = list(runtimes)
        return await self._scf.request("ListLayerVersions", params)

    async def list_layers(
        self,
        limit: int = 20,
        offset: int = 0,
        runtime: str | None = None,
        search_key: str | None = None,
    ) -> ApiResponse:
        params: dict[str, Any] = {"Limit": limit, "Offset": offset}
        if search_key:
            params["SearchKey"] = search_key
        if runtime:
            validate_runtimes([runtime])
            params["CompatibleRuntime"] = runtime
        return await self._scf.request("ListLayers", params)

    async def get_layer_version(self, name: str, version: int) -> ApiResponse:
        return await self._scf.request("GetLayerVersion", {"LayerName": name, "LayerVersion": version})

    async def _get_vpcs(self) -> list[dict[str, Any]]:
        response = await self._vpc.request("DescribeVpcs")
        return response.get("VpcSet") or []

    async def _get_subnets(self, vpc_id: str) -> list[dict[str, Any]]:
        response = await self._vpc.request(
            "DescribeSubnets",
            {"Filters": [{"Name": "vpc-id", "Values": [vpc_id]}]},
        )
        return response.get("SubnetSet") or []
