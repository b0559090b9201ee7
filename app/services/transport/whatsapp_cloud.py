"""WhatsApp Cloud API (Meta Graph API) transport.

Every send creates an OutboundMessage row first, then POSTs to
/{version}/{phone_number_id}/messages. Credentials come from the company's
settings blob, falling back to the global Meta settings.
"""

from __future__ import annotations

import uuid
from typing import Any

import httpx
import structlog

from app.core.config import settings
from app.core.exceptions import TransportError
from app.models.company import Company
from app.services.companies import CompanyLookup
from app.services.messages import OutboundMessageStore
from app.services.sessions.store import SessionStore
from app.services.transport.base import MessageTransport, SendStatus, TemplateSendResult

logger = structlog.get_logger(__name__)


def build_template_payload(
    phone_number: str,
    template_name: str,
    params: list[str],
    language: str,
) -> dict[str, Any]:
    template: dict[str, Any] = {
        "name": template_name,
        "language": {"code": language, "policy": "deterministic"},
    }
    if params:
        template["components"] = [
            {
                "type": "body",
                "parameters": [{"type": "text", "text": p} for p in params],
            }
        ]
    return {
        "messaging_product": "whatsapp",
        "to": phone_number,
        "type": "template",
        "template": template,
    }


def build_text_payload(phone_number: str, body: str) -> dict[str, Any]:
    return {
        "messaging_product": "whatsapp",
        "to": phone_number,
        "type": "text",
        "text": {"body": body},
    }


class WhatsAppCloudTransport(MessageTransport):
    """MessageTransport backed by the Meta Graph API.

    With a `window_guard`, template sends are skipped while the customer's
    window is still comfortably open.
    """

    def __init__(
        self,
        message_store: OutboundMessageStore,
        company_lookup: CompanyLookup,
        window_guard: SessionStore | None = None,
        guard_hours: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._messages = message_store
        self._companies = company_lookup
        self._window_guard = window_guard
        self._guard_hours = guard_hours if guard_hours is not None else settings.expiry_sweep_upper_hours
        self._http_client = http_client

    def _endpoint(self, company: Company) -> tuple[str, dict[str, str]]:
        phone_number_id = company.setting("meta_phone_number_id", settings.meta_phone_number_id)
        token = company.setting("meta_access_token", settings.meta_access_token)
        url = (
            f"{settings.meta_graph_api_base}/{settings.meta_graph_api_version}"
            f"/{phone_number_id}/messages"
        )
        return url, {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def _post(self, company: Company, payload: dict[str, Any]) -> httpx.Response:
        url, headers = self._endpoint(company)
        try:
            if self._http_client is not None:
                return await self._http_client.post(url, json=payload, headers=headers)
            async with httpx.AsyncClient(timeout=settings.transport_timeout_seconds) as client:
                return await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"WhatsApp API request failed: {e}") from e

    @staticmethod
    def _provider_error(response: httpx.Response) -> tuple[str, str]:
        try:
            error = response.json().get("error") or {}
        except ValueError:
            error = {}
        code = str(error.get("code") or response.status_code)
        message = error.get("message") or response.text or "Unknown provider error"
        return code, message

    @staticmethod
    def _message_id(response: httpx.Response) -> str | None:
        try:
            messages = response.json().get("messages") or []
        except ValueError:
            return None
        return messages[0].get("id") if messages else None

    async def send_template(
        self,
        company_id: uuid.UUID,
        phone_number: str,
        template_name: str,
        params: list[str],
        language: str,
        *,
        list_id: str | None = None,
    ) -> TemplateSendResult:
        company = await self._companies.require_active(company_id)

        if self._window_guard is not None:
            expiring = await self._window_guard.is_expiring_soon(
                phone_number, company_id, self._guard_hours
            )
            if not expiring:
                return TemplateSendResult(
                    status=SendStatus.SKIPPED,
                    detail="Customer window is still open",
                )

        message = await self._messages.create(
            company_id,
            phone_number,
            "template",
            template_name=template_name,
            parameters=params,
            list_id=list_id,
        )
        payload = build_template_payload(phone_number, template_name, params, language)

        try:
            response = await self._post(company, payload)
        except TransportError as e:
            await self._messages.mark_failed(message, "NETWORK_ERROR", e.message)
            raise

        if response.is_error:
            code, detail = self._provider_error(response)
            await self._messages.mark_failed(message, code, detail)
            logger.warning(
                "template_send_rejected",
                company_id=str(company_id),
                phone_number=phone_number,
                template_name=template_name,
                error_code=code,
                error=detail,
            )
            return TemplateSendResult(status=SendStatus.FAILED, detail=detail)

        provider_message_id = self._message_id(response)
        await self._messages.mark_sent(message, provider_message_id)
        logger.info(
            "template_sent",
            company_id=str(company_id),
            phone_number=phone_number,
            template_name=template_name,
            provider_message_id=provider_message_id,
        )
        return TemplateSendResult(
            status=SendStatus.SUCCESS,
            provider_message_id=provider_message_id,
        )

    async def send_text(
        self,
        company_id: uuid.UUID,
        phone_number: str,
        body: str,
    ) -> str | None:
        company = await self._companies.require_active(company_id)
        message = await self._messages.create(company_id, phone_number, "text", body=body)

        try:
            response = await self._post(company, build_text_payload(phone_number, body))
        except TransportError as e:
            await self._messages.mark_failed(message, "NETWORK_ERROR", e.message)
            raise

        if response.is_error:
            code, detail = self._provider_error(response)
            await self._messages.mark_failed(message, code, detail)
            raise TransportError(f"WhatsApp API rejected text message: {detail}", provider_code=code)

        provider_message_id = self._message_id(response)
        await self._messages.mark_sent(message, provider_message_id)
        logger.info(
            "text_sent",
            company_id=str(company_id),
            phone_number=phone_number,
            provider_message_id=provider_message_id,
        )
        return provider_message_id
