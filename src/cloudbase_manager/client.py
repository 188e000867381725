from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from .config import ManagerConfig
from .errors import TransientFailure, UnknownFailure, error_from_response
from .models import ActionRequest, ApiResponse
from .signer import sign_request


logger = logging.getLogger(__name__)

API_DOMAIN = "tencentcloudapi.com"
INTERNAL_API_DOMAIN = "internal.tencentcloudapi.com"


class CloudApiClient:
    def __init__(
        self,
        config: ManagerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._transport = transport
        self._clock = clock
        self._client = httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            transport=self._transport,
            proxy=None if transport is not None else self._config.credentials.proxy,
        )

    @property
    def config(self) -> ManagerConfig:
        return self._config

    async def close(self) -> None:
        await self._client.aclose()

    def host_for(self, service: str) -> str:
        domain = INTERNAL_API_DOMAIN if self._config.internal_endpoint else API_DOMAIN
        return f"{service}.{domain}"

    # Never retries; callers decide which actions are safe to repeat.
    async def execute(self, request: ActionRequest) -> ApiResponse:
        host = self.host_for(request.service)
        envelope = sign_request(request, self._config.credentials, host, int(self._clock()))

        headers = dict(envelope.headers)
        if self._config.region:
            headers["X-TC-Region"] = self._config.region

        url = f"https://{host}/"
        if envelope.query:
            url = f"{url}?{envelope.query}"

        logger.debug("Sending %s.%s (%s)", request.service, request.action, request.method)
        try:
            response = await self._client.request(
                request.method,
                url,
                content=envelope.body or None,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise TransientFailure(f"{request.action} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransientFailure(f"{request.action} transport error: {exc}") from exc

        return self._parse_envelope(request, response)

    @staticmethod
    def _decode_response_content(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _parse_envelope(self, request: ActionRequest, response: httpx.Response) -> ApiResponse:
        payload = self._decode_response_content(response)
        body = payload.get("Response") if isinstance(payload, dict) else None

        if not isinstance(body, dict):
            message = f"{request.action} returned status {response.status_code} without a Response envelope"
            if response.status_code >= 500:
                raise TransientFailure(message)
            raise UnknownFailure(message)

        request_id = body.get("RequestId")
        error = body.get("Error")
        if error:
            if isinstance(error, dict):
                failure = error_from_response(error.get("Code"), error.get("Message"), request_id)
            else:
                failure = UnknownFailure(f"{request.action} failed: {error}", request_id=request_id)
            logger.debug("%s.%s failed: %s", request.service, request.action, failure)
            raise failure

        return ApiResponse(request_id=request_id, payload=body)


class CloudService:
    def __init__(self, client: CloudApiClient, service: str, version: str) -> None:
        self.client = client
        self.service = service
        self.version = version

    async def request(
        self,
        action: str,
        params: dict[str, Any] | None = None,
        method: str = "POST",
    ) -> ApiResponse:
        return await self.client.execute(
            ActionRequest(
                service=self.service,
                version=self.version,
                action=action,
                parameters=params or {},
                method=method,
            )
        )
