"""Deployment platform REST client (bearer token). Implements DeploymentControl protocol."""

import logging
import time
from typing import Any, Optional

import httpx

from infra_dashboard.application.exceptions import ActionFailedError, BackendUnavailableError
from infra_dashboard.domain.schemas.deployment import Application
from infra_dashboard.domain.schemas.snapshot import ServiceStatus
from infra_dashboard.scalability.retry import retry_once

logger = logging.getLogger(__name__)


class CoolifyApiError(ActionFailedError):
    def __init__(self, message: str, status_code: int, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _unwrap(payload: Any) -> Any:
    # Responses come either wrapped in "result" or bare.
    if isinstance(payload, dict) and payload.get("result") is not None:
        return payload["result"]
    return payload


class CoolifyClient:
    """
    Thin async wrapper over the platform API. GETs are retried once on transport errors;
    mutations never are. `transport` lets tests substitute httpx.MockTransport.
    """

    def __init__(
        self,
        base_url: Optional[str],
        token: Optional[str],
        timeout_sec: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client: Optional[httpx.AsyncClient] = None
        if base_url and token:
            self._client = httpx.AsyncClient(
                base_url=base_url.rstrip("/"),
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
                timeout=timeout_sec,
                transport=transport,
            )

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        if self._client is None:
            raise BackendUnavailableError("COOLIFY_API_URL / COOLIFY_API_TOKEN are not configured")
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Deployment platform unreachable: {e}") from e
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            logger.warning(
                "coolify_api_error",
                extra={"method": method, "path": path, "status_code": response.status_code},
            )
            raise CoolifyApiError(
                f"Coolify API error: {response.status_code} {response.reason_phrase}",
                response.status_code,
                body,
            )
        return _unwrap(response.json())

    async def _get(self, path: str) -> Any:
        return await retry_once(
            lambda: self._request("GET", path),
            retry_on=(BackendUnavailableError,),
            operation=f"coolify GET {path}",
        )

    async def ping(self) -> ServiceStatus:
        start = time.monotonic()
        try:
            await self._get("/projects")
        except (BackendUnavailableError, ActionFailedError) as e:
            return ServiceStatus.failed(e.message)
        latency_ms = int((time.monotonic() - start) * 1000)
        return ServiceStatus(ok=True, message="Connected to Coolify API", latency_ms=latency_ms)

    async def list_applications(self) -> list[Application]:
        raw = await self._get("/applications")
        return [
            Application(
                uuid=item["uuid"],
                name=item.get("name") or item["uuid"],
                fqdn=item.get("fqdn"),
                status=item.get("status"),
                git_repository=item.get("git_repository"),
                git_branch=item.get("git_branch"),
            )
            for item in raw or []
            if isinstance(item, dict) and item.get("uuid")
        ]

    async def trigger_deploy(self, application_uuid: str, force: bool = False) -> str:
        """Queue a deployment and return its uuid."""
        response = await self._request("POST", "/deploy", json={"uuid": application_uuid, "force": force})
        deployments = response.get("deployments") if isinstance(response, dict) else None
        if deployments and deployments[0].get("deployment_uuid"):
            return deployments[0]["deployment_uuid"]
        raise CoolifyApiError("No deployment UUID returned", 502, response)

    async def cancel_deployment(self, deployment_uuid: str) -> Optional[str]:
        """Request cancellation; returns the platform's message, if any."""
        response = await self._request("POST", f"/deployments/{deployment_uuid}/cancel")
        if isinstance(response, dict):
            return response.get("message") or response.get("status")
        return None

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
