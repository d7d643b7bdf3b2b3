"""Generic OpenAI-compatible ``/chat/completions`` adapter."""

from __future__ import annotations

from typing import Any

from open_chat.types import ChatRequest, Message, Provider, normalize_role

from .base import UpstreamAdapter, UpstreamCall, image_parts, message_text

_DEFAULT_BASE_URL = "https://api.openai.com/v1"


def chat_completions_url(base_url: str) -> str:
    base = (base_url or _DEFAULT_BASE_URL).rstrip("/")
    if base.endswith("/chat/completions"):
        return base
    return f"{base}/chat/completions"


def openai_message(message: Message) -> dict[str, Any]:
    """One ``{role, content}`` entry; images switch content to the array form."""
    role = normalize_role(message.role)
    text = message_text(message)
    images = image_parts(message) if role == "user" else []
    if not images:
        return {"role": role, "content": text}
    content: list[dict[str, Any]] = []
    if text:
        content.append({"type": "text", "text": text})
    for image in images:
        content.append({"type": "image_url", "image_url": {"url": image.url}})
    return {"role": role, "content": content}


class OpenAIAdapter(UpstreamAdapter):
    """Any endpoint that speaks the OpenAI chat-completions streaming protocol."""

    provider = Provider.OPENAI

    def build_call(self, request: ChatRequest) -> UpstreamCall:
        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(openai_message(m) for m in request.messages)

        body: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": True,
            "temperature": self._generation_option("temperature", 0.7),
            "max_tokens": self._generation_option("max_tokens", 1024),
        }
        if request.tools:
            body["tools"] = list(request.tools)
        if self.spec.extra_params:
            body.update(self.spec.extra_params)

        headers = self._sse_headers()
        headers["Authorization"] = f"Bearer {self.spec.api_key}"
        return UpstreamCall(
            url=chat_completions_url(self.spec.base_url),
            body=body,
            headers=headers,
        )
