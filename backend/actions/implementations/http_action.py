"""HTTP Request and Webhook action implementations.

Makes HTTP requests to external APIs/services.
Supports all methods, custom headers, auth, timeouts
and JSON response parsing.
"""

import base64
import ipaddress
import json
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
import structlog

from actions.base_action import BaseAction, SchemaField
from core.webhook_signing import sign_webhook_payload
from workflow.results import Failure, NodeResult, Success

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
# The engine's own PostgreSQL and Redis
FORBIDDEN_PORTS = (5432, 6379)


def _is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is private, loopback or reserved."""
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_reserved


def validate_url_safety(url: str) -> None:
    """Validate URL for SSRF protection.

    Blocks:
    - Private/loopback IPs
    - The database and broker ports (5432, 6379)
    - Non-HTTP(S) schemes

    Raises:
        ValueError: If URL is unsafe
    """
    parsed = urlparse(url)

    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")

    if hostname.lower() in ("localhost", "127.0.0.1", "::1"):
        raise ValueError("Connections to localhost are not allowed")

    # Domain names are not resolved here
    if _is_private_ip(hostname):
        raise ValueError(f"Connections to private IP {hostname} are not allowed")

    if parsed.port and parsed.port in FORBIDDEN_PORTS:
        raise ValueError(f"Connections to internal port {parsed.port} are not allowed")


class HttpActionMixin:
    """Shared httpx client construction.

    ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    def http_client(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=timeout)

    @staticmethod
    def parse_response(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text


class HttpRequestAction(HttpActionMixin, BaseAction):
    """Execute HTTP requests to external services.

    Config:
        url: Target URL (required)
        method: HTTP method, GET POST PUT PATCH or DELETE (default: GET)
        headers: Dict of HTTP headers
        params: URL query parameters
        body: Request body (for POST/PUT/PATCH)
        body_type: "json" | "form" | "text" (default: json)
        auth: Auth config { "type": "bearer|basic|api_key", "token|username|key": "..." }
        timeout: Request timeout in seconds (default: 30)
        fail_on_error: Treat status >= 400 as a failure (default: true)
    """

    action_id = "http_request"
    display_name = "HTTP Request"
    description = "Make HTTP requests to APIs and web services"
    category = "integrations"
    icon = "🌐"
    retryable = True

    async def execute(self, config: Dict[str, Any], context) -> NodeResult:
        url = config.get("url")
        if not url:
            return Failure(message="Missing required config: url")

        # SSRF protection: validate URL before making request
        try:
            validate_url_safety(url)
        except ValueError as e:
            return Failure(message=str(e))

        method = str(config.get("method") or "GET").upper()
        headers = dict(config.get("headers") or {})
        params = config.get("params") or {}
        body = config.get("body")
        body_type = config.get("body_type", "json")
        timeout = float(config.get("timeout") or DEFAULT_TIMEOUT_SECONDS)
        fail_on_error = config.get("fail_on_error", True)

        self._apply_auth(headers, config.get("auth") or {})

        kwargs: Dict[str, Any] = {"method": method, "url": url, "headers": headers, "params": params}
        if body not in (None, "") and method in ("POST", "PUT", "PATCH"):
            if body_type == "json":
                kwargs["json"] = body if isinstance(body, (dict, list)) else json.loads(body)
            elif body_type == "form":
                kwargs["data"] = body
            else:
                kwargs["content"] = str(body)

        try:
            async with self.http_client(timeout) as client:
                response = await client.request(**kwargs)
        except httpx.TimeoutException:
            return Failure(message=f"Request timed out after {timeout}s", retryable=True)
        except httpx.TransportError as e:
            return Failure(message=f"Connection failed: {e}", retryable=True)

        output = {
            "status_code": response.status_code,
            "headers": dict(response.headers),
            "body": self.parse_response(response),
            "url": str(response.url),
        }

        if fail_on_error and response.status_code >= 400:
            return Failure(
                message=f"HTTP {response.status_code}",
                retryable=response.status_code >= 500,
            )
        return Success(output=output)

    @staticmethod
    def _apply_auth(headers: Dict[str, str], auth_config: Dict[str, Any]) -> None:
        auth_type = auth_config.get("type", "")
        if auth_type == "bearer":
            headers["Authorization"] = f"Bearer {auth_config['token']}"
        elif auth_type == "basic":
            creds = base64.b64encode(
                f"{auth_config['username']}:{auth_config['password']}".encode()
            ).decode()
            headers["Authorization"] = f"Basic {creds}"
        elif auth_type == "api_key":
            headers[auth_config.get("header", "X-API-Key")] = auth_config["key"]

    @classmethod
    def describe_schema(cls) -> List[SchemaField]:
        return [
            SchemaField("url", "text", "URL", required=True),
            SchemaField(
                "method", "select", "Method", default="GET",
                options=["GET", "POST", "PUT", "PATCH", "DELETE"],
            ),
            SchemaField("headers", "keyvalue", "Headers"),
            SchemaField("params", "keyvalue", "Query Parameters"),
            SchemaField(
                "body", "code", "Body",
                conditional_on={"field": "method", "value": ["POST", "PUT", "PATCH"]},
            ),
            SchemaField(
                "body_type", "select", "Body Type", default="json",
                options=["json", "form", "text"],
                conditional_on={"field": "method", "value": ["POST", "PUT", "PATCH"]},
            ),
            SchemaField("auth", "auth", "Authentication"),
            SchemaField("timeout", "number", "Timeout (seconds)", default=DEFAULT_TIMEOUT_SECONDS),
            SchemaField("fail_on_error", "checkbox", "Fail on HTTP error", default=True),
        ]


class WebhookAction(HttpActionMixin, BaseAction):
    """POST a JSON payload to a webhook URL.

    Config:
        url: Webhook URL (required)
        payload: JSON payload; empty or ``{{variables}}`` sends the whole context
        secret: When set, adds an X-Webhook-Signature header
        timeout: Request timeout in seconds (default: 30)
    """

    action_id = "webhook"
    display_name = "Call Webhook"
    description = "Send data to a webhook URL"
    category = "integrations"
    icon = "🔗"
    retryable = True

    async def execute(self, config: Dict[str, Any], context) -> NodeResult:
        url = config.get("url")
        if not url:
            return Failure(message="Missing required config: url")
        try:
            validate_url_safety(url)
        except ValueError as e:
            return Failure(message=str(e))

        payload = config.get("payload")
        # "{{variables}}" has already rendered to "" by the time we get here
        if payload in (None, "", "{{variables}}"):
            payload = context.snapshot()
        elif isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError:
                return Failure(message="Webhook payload is not valid JSON")

        body = json.dumps(payload, default=str).encode()
        headers = {"Content-Type": "application/json"}
        if config.get("secret"):
            headers.update(sign_webhook_payload(body, str(config["secret"])))

        timeout = float(config.get("timeout") or DEFAULT_TIMEOUT_SECONDS)
        try:
            async with self.http_client(timeout) as client:
                response = await client.post(url, content=body, headers=headers)
        except httpx.TransportError as e:
            return Failure(message=f"Webhook error: {e}", retryable=True)

        if response.status_code >= 400:
            return Failure(
                message=f"Webhook returned {response.status_code}",
                retryable=response.status_code == 429 or response.status_code >= 500,
            )

        return Success(output={"status_code": response.status_code, "response": response.text})

    @classmethod
    def describe_schema(cls) -> List[SchemaField]:
        return [
            SchemaField("url", "text", "Webhook URL", required=True),
            SchemaField("payload", "code", "Payload", default="{{variables}}"),
            SchemaField(
                "secret", "password", "Signing Secret",
                description="If provided, adds X-Webhook-Signature header",
            ),
            SchemaField("timeout", "number", "Timeout (seconds)", default=DEFAULT_TIMEOUT_SECONDS),
        ]


HTTP_ACTION_TYPES = {
    "http_request": HttpRequestAction,
    "webhook": WebhookAction,
}
