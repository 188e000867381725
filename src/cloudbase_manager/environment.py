from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .client import CloudService
from .errors import ValidationFailure


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FunctionContext:
    env_id: str
    namespace: str


class Environment:
    def __init__(self, env_id: str | None, tcb_service: CloudService, namespace: str | None = None) -> None:
        self.env_id = env_id or ""
        self._tcb_service = tcb_service
        self._context: FunctionContext | None = None
        if namespace:
            self._context = FunctionContext(env_id=self.env_id, namespace=namespace)

    async def resolve(self) -> FunctionContext:
        if self._context is not None:
            return self._context
        if not self.env_id:
            raise ValidationFailure("No environment id configured; set TCB_ENV_ID or pass env_id")

        response = await self._tcb_service.request("DescribeEnvs", {"EnvId": self.env_id})
        env_list: list[dict[str, Any]] = response.get("EnvList") or []
        if not env_list:
            raise ValidationFailure(
                f"Environment {self.env_id} not found",
                request_id=response.request_id,
            )

        functions = env_list[0].get("Functions") or []
        namespace = functions[0].get("Namespace") if functions else None
        if not namespace:
            raise ValidationFailure(
                f"Environment {self.env_id} has no cloud function namespace",
                request_id=response.request_id,
            )

        logger.debug("Resolved environment %s to namespace %s", self.env_id, namespace)
        self._context = FunctionContext(env_id=self.env_id, namespace=namespace)
        return self._context
