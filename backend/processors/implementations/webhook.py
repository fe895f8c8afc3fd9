"""Webhook step processor.

Calls an external HTTP endpoint with the instance data. Network failures and
non-2xx answers park the instance on the step so a later re-invocation can
retry; they are never raised.
"""

import ipaddress
import json
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
import structlog

from core.constants import StepType
from core.webhook_signing import sign_webhook_payload
from processors.base import InstanceSnapshot, StepProcessor, StepProcessorResult
from schemas.workflow import WorkflowNode

logger = structlog.get_logger(__name__)

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
FORBIDDEN_PORTS = (5432, 6379, 9000)  # postgres, redis, deployer


def _is_private_ip(hostname: str) -> bool:
    """True for private, loopback, link-local or reserved literal IPs."""
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved


def validate_url_safety(url: str) -> None:
    """Validate a webhook target against SSRF.

    Blocks:
    - Non-HTTP(S) schemes
    - localhost and private/loopback IP literals
    - Internal service ports

    Raises:
        ValueError: If the URL is unsafe
    """
    parsed = urlparse(url)

    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme or '(none)'}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")

    if hostname.lower() in ("localhost", "localhost.localdomain"):
        raise ValueError("Connections to localhost are not allowed")

    if _is_private_ip(hostname):
        raise ValueError(f"Connections to private IP {hostname} are not allowed")

    if parsed.port in FORBIDDEN_PORTS:
        raise ValueError(f"Connections to internal port {parsed.port} are not allowed")


class WebhookProcessor(StepProcessor):
    """Send the instance data to ``config["webhook"]``.

    Config:
        webhook:
            url: Target URL (required)
            method: HTTP method (default: POST)
            headers: Extra request headers
            payload: Extra top-level fields merged into the JSON body
            secret: HMAC signing secret (default: engine-wide secret)
            timeout: Seconds (default: engine webhook timeout)

    Body:
        {"workflowInstanceId": ..., "stepId": ..., "data": {...}, **payload}
    """

    step_type = StepType.WEBHOOK

    def _failure(self, step: WorkflowNode, error: str) -> StepProcessorResult:
        logger.warning("Webhook step failed", step_id=step.id, error=error)
        return StepProcessorResult(completed=False, error=error)

    def build_body(self, instance: InstanceSnapshot, step: WorkflowNode, payload: Dict[str, Any]) -> bytes:
        body = {
            "workflowInstanceId": instance.id,
            "stepId": step.id,
            "data": instance.data,
            **payload,
        }
        return json.dumps(body, default=str).encode()

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        content: bytes,
        timeout: float,
    ) -> httpx.Response:
        client = self.deps.http_client
        if client is not None:
            return await client.request(method, url, headers=headers, content=content, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as own_client:
            return await own_client.request(method, url, headers=headers, content=content)

    async def process(self, instance: InstanceSnapshot, step: WorkflowNode) -> StepProcessorResult:
        webhook = step.config.get("webhook")
        if not isinstance(webhook, dict) or not webhook.get("url"):
            return self._failure(step, "Missing required webhook config: url")

        url = str(webhook["url"])
        if not self.config.allow_private_webhook_targets:
            try:
                validate_url_safety(url)
            except ValueError as e:
                return self._failure(step, str(e))

        method = str(webhook.get("method") or "POST").upper()
        if method not in ALLOWED_METHODS:
            return self._failure(step, f"Unsupported webhook method: {method}")

        payload = webhook.get("payload") or {}
        if not isinstance(payload, dict):
            return self._failure(step, "Webhook payload must be an object")

        extra_headers = webhook.get("headers") or {}
        if not isinstance(extra_headers, dict):
            return self._failure(step, "Webhook headers must be an object")

        content = self.build_body(instance, step, payload)
        headers = {"Content-Type": "application/json"}
        headers.update({str(k): str(v) for k, v in extra_headers.items()})

        secret: Optional[str] = webhook.get("secret") or self.config.webhook_signing_secret
        if secret:
            headers.update(sign_webhook_payload(content, secret))

        timeout = float(webhook.get("timeout") or self.config.webhook_timeout_seconds)

        try:
            response = await self._send(method, url, headers, content, timeout)
        except httpx.HTTPError as e:
            return self._failure(step, f"Webhook request failed: {e}")

        if not response.is_success:
            return self._failure(step, f"Webhook failed with status {response.status_code}")

        return StepProcessorResult(completed=True, data=self._parse(response))

    def _parse(self, response: httpx.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            parsed = response.json()
        except ValueError:
            return {"text": response.text}
        if isinstance(parsed, dict):
            return parsed
        return {"body": parsed}


WEBHOOK_PROCESSORS = {
    StepType.WEBHOOK: WebhookProcessor,
}
