"""Cloudflare Workers AI adapter (dedicated inference).

Workers AI streams its native shape, ``data: {"response": "..."}``, and
reasoning models such as QwQ emit ``<think>`` spans inline; QwQ omits the
opening tag entirely, which is what ``reasoning_models`` accounts for.
"""

from __future__ import annotations

from typing import Any

from open_chat.types import ChatRequest, Provider, normalize_role

from .base import UpstreamAdapter, UpstreamCall, message_text

_API_ROOT = "https://api.cloudflare.com/client/v4/accounts"


class WorkersAIAdapter(UpstreamAdapter):
    provider = Provider.WORKERS_AI

    def run_url(self, model: str) -> str:
        if self.spec.base_url:
            return f"{self.spec.base_url.rstrip('/')}/{model}"
        return f"{_API_ROOT}/{self.spec.account_id}/ai/run/{model}"

    def build_call(self, request: ChatRequest) -> UpstreamCall:
        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        for message in request.messages:
            messages.append({
                "role": normalize_role(message.role),
                "content": message_text(message),
            })

        body: dict[str, Any] = {
            "messages": messages,
            "stream": True,
            "max_tokens": self._generation_option("max_tokens", 2048),
        }
        if self.spec.temperature is not None:
            body["temperature"] = self.spec.temperature
        if request.tools:
            body["tools"] = list(request.tools)
        if self.spec.extra_params:
            body.update(self.spec.extra_params)

        headers = self._sse_headers()
        headers["Authorization"] = f"Bearer {self.spec.api_key}"
        return UpstreamCall(url=self.run_url(request.model), body=body, headers=headers)
