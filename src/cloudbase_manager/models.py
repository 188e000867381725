from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


class _Unset:
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


# Marks an optional parameter that must be left out of the request entirely.
# ``None`` is different: it is sent as JSON null ("leave unchanged").
UNSET: Any = _Unset()

HTTP_METHODS = {"POST", "GET"}


def strip_unset(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: strip_unset(item) for key, item in value.items() if item is not UNSET}
    if isinstance(value, (list, tuple)):
        return [strip_unset(item) for item in value if item is not UNSET]
    return value


@dataclass(slots=True)
class ActionRequest:
    service: str
    version: str
    action: str
    parameters: dict[str, Any] = field(default_factory=dict)
    method: str = "POST"

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if self.method not in HTTP_METHODS:
            raise ValueError(f"Unsupported method {self.method!r}; expected POST or GET")
        self.parameters = strip_unset(dict(self.parameters))


@dataclass(slots=True)
class ApiResponse:
    request_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.payload[key]


@dataclass(frozen=True, slots=True)
class FunctionVpc:
    vpc_id: str = ""
    subnet_id: str = ""


@dataclass(frozen=True, slots=True)
class FunctionTrigger:
    name: str
    type: str
    config: str


@dataclass(frozen=True, slots=True)
class FunctionLayer:
    name: str
    version: int

    def to_params(self) -> dict[str, Any]:
        return {"LayerName": self.name, "LayerVersion": self.version}


@dataclass(slots=True)
class FunctionSpec:
    name: str
    runtime: str | None = None
    handler: str | None = None
    timeout: int | None = None
    env_variables: dict[str, Any] = field(default_factory=dict)
    vpc: FunctionVpc | None = None
    layers: list[FunctionLayer] = field(default_factory=list)
    install_dependency: bool | None = None
    triggers: list[FunctionTrigger] = field(default_factory=list)
    ignore: list[str] = field(default_factory=list)
    is_wait_install: bool = False
    l5: bool | None = None


@dataclass(slots=True)
class ReconcileResult:
    trigger_result: ApiResponse | None
    config_result: ApiResponse
    code_result: ApiResponse


DeployResult = Union[ApiResponse, ReconcileResult]


@dataclass(slots=True)
class LayerSpec:
    name: str
    runtimes: list[str] = field(default_factory=list)
    content_path: str | None = None
    base64_content: str | None = None
    description: str = ""
    license_info: str = ""


@dataclass(slots=True)
class FunctionLogQuery:
    name: str
    offset: int = 0
    limit: int = 10
    order: str | None = None
    order_by: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    request_id: str | None = None
