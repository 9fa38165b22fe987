"""
Integration actions: deliver submission data to external systems.

Each action declares an ``integration_id``. The interpreter records every
attempt in the sync ledger under that id, wraps the call with the retry
coordinator, and skips a node that is sent again when the ledger already
holds a success for the same submission.
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from actions.base_action import IntegrationAction, SchemaField
from actions.implementations.http_action import DEFAULT_TIMEOUT_SECONDS, HttpActionMixin, validate_url_safety
from app.config import get_settings
from core.exceptions import ActionFailure
from workflow.results import Failure, NodeResult
from workflow.state import utcnow

logger = structlog.get_logger(__name__)


def flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested mappings into ``parent_child`` keys; lists are kept as values."""
    result: Dict[str, Any] = {}
    for key, value in data.items():
        new_key = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict) and value:
            result.update(flatten(value, new_key))
        else:
            result[new_key] = value
    return result


def _http_failure(service: str, response: httpx.Response) -> Failure:
    try:
        detail = response.json().get("message")
    except (ValueError, AttributeError):
        detail = None
    return Failure(
        message=f"{service} returned {response.status_code}" + (f": {detail}" if detail else ""),
        retryable=IntegrationAction.is_retryable_status(response.status_code),
    )


# ─── Zapier ────────────────────────────────────────────────────


class ZapierWebhookAction(HttpActionMixin, IntegrationAction):
    """Send a submission to a Zapier catch hook.

    Config:
        webhook_url: Zapier hook URL (required)
        mapping: ``{target_field: source_path}`` into the submission; empty sends all fields
        flatten_data: Flatten nested objects into ``a_b`` keys
        include_metadata: Add a ``_metadata`` block with submission/execution ids
    """

    action_id = "zapier_webhook"
    integration_id = "zapier"
    display_name = "Send to Zapier"
    description = "Trigger a Zap with the submission data"
    icon = "⚡"

    async def execute(self, config: Dict[str, Any], context) -> NodeResult:
        url = config.get("webhook_url")
        if not url:
            return Failure(message="Missing required config: webhook_url")
        try:
            validate_url_safety(url)
        except ValueError as e:
            return Failure(message=str(e))

        payload = self.build_payload(config, context)

        try:
            async with self.http_client(DEFAULT_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Accept": "application/json", "User-Agent": self._user_agent()},
                )
        except httpx.TransportError as e:
            return Failure(message=f"Zapier request failed: {e}", retryable=True)

        if not 200 <= response.status_code < 300:
            return _http_failure("Zapier", response)

        body = self.parse_response(response)
        external_id = None
        if isinstance(body, dict):
            external_id = body.get("id") or body.get("request_id")
        logger.info("zapier_webhook_sent", status_code=response.status_code, external_id=external_id)
        return self.success(external_id, status_code=response.status_code)

    def build_payload(self, config: Dict[str, Any], context) -> Dict[str, Any]:
        data = self.submission_data(context)
        mapping = config.get("mapping") or {}
        if mapping:
            data = self.map_fields(data, mapping)
        if config.get("flatten_data"):
            data = flatten(data)

        payload: Dict[str, Any] = {
            "_source": "formflow",
            "_version": get_settings().APP_VERSION,
            "_timestamp": utcnow().isoformat(),
        }
        if config.get("include_metadata"):
            payload["_metadata"] = {
                "submission_id": context.get("system.submission_id"),
                "execution_id": context.get("system.execution_id"),
                "workflow_id": context.get("system.workflow_id"),
            }
        payload["data"] = data
        return payload

    @staticmethod
    def _user_agent() -> str:
        return f"FormFlow/{get_settings().APP_VERSION}"

    @classmethod
    def describe_schema(cls) -> List[SchemaField]:
        return [
            SchemaField("webhook_url", "url", "Webhook URL", required=True),
            SchemaField("mapping", "mapping", "Field Mapping"),
            SchemaField("flatten_data", "checkbox", "Flatten nested data", default=False),
            SchemaField("include_metadata", "checkbox", "Include metadata", default=False),
        ]


# ─── HubSpot ───────────────────────────────────────────────────


class HubSpotContactAction(HttpActionMixin, IntegrationAction):
    """Create or update a HubSpot contact from a submission.

    Config:
        access_token: Private app token (required)
        mapping: ``{hubspot_property: source_path}``; empty sends all fields
        update_existing: Update the contact with the same email (default: true)
        lifecycle_stage: Default lifecycle stage for the contact
        lead_status: Default lead status for the contact
    """

    action_id = "hubspot_contact"
    integration_id = "hubspot"
    display_name = "HubSpot Contact"
    description = "Create or update a contact in HubSpot CRM"
    icon = "🧲"

    API_BASE = "https://api.hubapi.com"

    async def execute(self, config: Dict[str, Any], context) -> NodeResult:
        token = config.get("access_token")
        if not token:
            return Failure(message="Missing required config: access_token")

        properties = self.build_properties(config, context)
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        base = str(config.get("api_base") or self.API_BASE).rstrip("/")

        try:
            async with self.http_client(DEFAULT_TIMEOUT_SECONDS) as client:
                existing_id = None
                if properties.get("email") and config.get("update_existing", True):
                    existing_id = await self._find_contact(client, base, headers, properties["email"])

                if existing_id:
                    response = await client.patch(
                        f"{base}/crm/v3/objects/contacts/{existing_id}",
                        json={"properties": properties},
                        headers=headers,
                    )
                else:
                    response = await client.post(
                        f"{base}/crm/v3/objects/contacts",
                        json={"properties": properties},
                        headers=headers,
                    )
        except httpx.TransportError as e:
            return Failure(message=f"HubSpot request failed: {e}", retryable=True)

        if response.status_code >= 400:
            return _http_failure("HubSpot", response)

        body = self.parse_response(response)
        external_id = str(body.get("id")) if isinstance(body, dict) and body.get("id") else existing_id
        return self.success(external_id, updated=bool(existing_id))

    def build_properties(self, config: Dict[str, Any], context) -> Dict[str, Any]:
        data = self.submission_data(context)
        mapping = config.get("mapping") or {}
        properties = self.map_fields(data, mapping) if mapping else dict(data)
        if config.get("lifecycle_stage"):
            properties["lifecyclestage"] = config["lifecycle_stage"]
        if config.get("lead_status"):
            properties["hs_lead_status"] = config["lead_status"]
        return {k: v for k, v in properties.items() if v is not None}

    async def _find_contact(
        self, client: httpx.AsyncClient, base: str, headers: Dict[str, str], email: str
    ) -> Optional[str]:
        response = await client.post(
            f"{base}/crm/v3/objects/contacts/search",
            json={
                "filterGroups": [
                    {"filters": [{"propertyName": "email", "operator": "EQ", "value": email}]}
                ],
                "limit": 1,
            },
            headers=headers,
        )
        if response.status_code >= 400:
            failure = _http_failure("HubSpot", response)
            raise ActionFailure(f"Contact lookup failed: {failure.message}", retryable=failure.retryable)
        body = self.parse_response(response)
        results = body.get("results") if isinstance(body, dict) else None
        results = results or []
        return str(results[0]["id"]) if results else None

    @classmethod
    def describe_schema(cls) -> List[SchemaField]:
        return [
            SchemaField("access_token", "password", "Access Token", required=True),
            SchemaField("mapping", "mapping", "Field Mapping"),
            SchemaField("update_existing", "checkbox", "Update existing contact", default=True),
            SchemaField(
                "lifecycle_stage", "select", "Lifecycle Stage",
                options=["subscriber", "lead", "marketingqualifiedlead", "salesqualifiedlead", "customer"],
            ),
            SchemaField("lead_status", "text", "Lead Status"),
        ]


INTEGRATION_ACTION_TYPES = {
    "zapier_webhook": ZapierWebhookAction,
    "hubspot_contact": HubSpotContactAction,
}
