"""Gemini through an AI gateway (gateway-routed provider).

Requests go to ``streamGenerateContent?alt=sse`` on the gateway's
``google-ai-studio`` route.  Gemini has no system role and calls the
assistant ``model``; images travel as ``inline_data`` when they are data
URLs.  Search grounding is the ``google_search`` tool.
"""

from __future__ import annotations

import logging
from typing import Any

from open_chat.types import ChatRequest, Message, Provider, normalize_role

from .base import UpstreamAdapter, UpstreamCall, image_parts, message_text

_logger = logging.getLogger(__name__)

_GATEWAY_ROOT = "https://gateway.ai.cloudflare.com/v1"


def _image_part(url: str, media_type: str) -> dict[str, Any]:
    if url.startswith("data:") and "," in url:
        header, data = url.split(",", 1)
        mime = header[5:].split(";", 1)[0] or media_type
        return {"inline_data": {"mime_type": mime, "data": data}}
    return {"file_data": {"mime_type": media_type, "file_uri": url}}


def gemini_content(message: Message) -> dict[str, Any] | None:
    role = "model" if normalize_role(message.role) == "assistant" else "user"
    parts: list[dict[str, Any]] = []
    text = message_text(message)
    if text:
        parts.append({"text": text})
    if role == "user":
        for image in image_parts(message):
            parts.append(_image_part(image.url, image.media_type))
    if not parts:
        return None
    return {"role": role, "parts": parts}


def translate_tools(tools: tuple[dict[str, Any], ...]) -> list[dict[str, Any]]:
    """OpenAI-style ``{"type": "function", "function": {...}}`` to Gemini."""
    declarations = []
    for tool in tools:
        func = tool.get("function") if isinstance(tool, dict) else None
        if not isinstance(func, dict) or not func.get("name"):
            continue
        decl = {"name": func["name"], "description": func.get("description", "")}
        if func.get("parameters"):
            decl["parameters"] = func["parameters"]
        declarations.append(decl)
    if not declarations:
        return []
    return [{"functionDeclarations": declarations}]


class GatewayAdapter(UpstreamAdapter):
    provider = Provider.GOOGLE

    def base_url(self) -> str:
        if self.spec.base_url:
            return self.spec.base_url.rstrip("/")
        return f"{_GATEWAY_ROOT}/{self.spec.account_id}/{self.spec.gateway}/google-ai-studio"

    def build_call(self, request: ChatRequest) -> UpstreamCall:
        system_texts = [self.system_prompt] if self.system_prompt else []
        contents: list[dict[str, Any]] = []
        for message in request.messages:
            if normalize_role(message.role) == "system":
                text = message_text(message)
                if text:
                    system_texts.append(text)
                continue
            content = gemini_content(message)
            if content is not None:
                contents.append(content)

        body: dict[str, Any] = {"contents": contents}
        if system_texts:
            body["systemInstruction"] = {"parts": [{"text": t} for t in system_texts]}

        generation: dict[str, Any] = {}
        if self.spec.temperature is not None:
            generation["temperature"] = self.spec.temperature
        if self.spec.max_tokens is not None:
            generation["maxOutputTokens"] = self.spec.max_tokens
        if generation:
            body["generationConfig"] = generation

        tools = translate_tools(request.tools)
        if request.search_enabled:
            tools.append({"google_search": {}})
        if tools:
            body["tools"] = tools
        if self.spec.extra_params:
            body.update(self.spec.extra_params)

        headers = self._sse_headers()
        headers["x-goog-api-key"] = self.spec.api_key
        return UpstreamCall(
            url=f"{self.base_url()}/v1beta/models/{request.model}:streamGenerateContent",
            body=body,
            headers=headers,
            params={"alt": "sse"},
        )
