from __future__ import annotations

from typing import Any, Callable, Optional, Sequence

import httpx
import orjson
import structlog

from ..errors import ConfigurationError, GenerationError
from . import parameters as p

log = structlog.get_logger()

# Generation backend for study notes. The default provider calls the OpenAI
# Responses API with a stored prompt (the prompt receives {"topic": ...}).
# LLM_PROVIDER=ollama talks to a local Ollama daemon instead.

OPENAI_BASE_URL = "https://api.openai.com/v1"
OLLAMA_BASE_URL = "http://host.docker.internal:11434"
OLLAMA_MODEL = "qwen3:14b"

OLLAMA_PROMPT = (
    "Write thorough, well-structured study notes in Markdown on the topic below. "
    "Use headings, bullet points and short examples.\n\nTopic: {topic}"
)


def _text_of(part: Any) -> Optional[str]:
    if isinstance(part, str):
        return part
    if not isinstance(part, dict):
        return None
    text = part.get("text")
    if isinstance(text, str):
        return text
    if isinstance(text, dict) and isinstance(text.get("value"), str):
        return text["value"]
    if isinstance(part.get("output_text"), str):
        return part["output_text"]
    return None


def _join(parts) -> Optional[str]:
    md = "".join(t for t in (_text_of(c) for c in parts) if t).strip()
    return md or None


def from_output_text(data: Any) -> Optional[str]:
    text = data.get("output_text")
    if isinstance(text, str) and text.strip():
        return text.strip()
    return None


def from_output_blocks(data: Any) -> Optional[str]:
    """Responses API: ``output: [{content: [{type: "output_text", text}]}]``."""
    blocks = data.get("output")
    if not isinstance(blocks, list):
        return None
    parts = []
    for block in blocks:
        if isinstance(block, dict):
            parts.extend(block.get("content") or block.get("contents") or [])
    return _join(parts)


def from_content_list(data: Any) -> Optional[str]:
    """Older envelopes: ``content: [{text: {value}}]`` or ``content: [{text}]``."""
    content = data.get("content")
    if not isinstance(content, list):
        return None
    return _join(content)


def from_chat_choices(data: Any) -> Optional[str]:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, str) and content.strip():
        return content.strip()
    return None


def from_ollama_response(data: Any) -> Optional[str]:
    text = data.get("response")
    if isinstance(text, str) and text.strip():
        return text.strip()
    return None


EXTRACTORS: Sequence[Callable[[Any], Optional[str]]] = (
    from_output_text,
    from_output_blocks,
    from_content_list,
    from_chat_choices,
    from_ollama_response,
)


def extract_markdown(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    for extractor in EXTRACTORS:
        md = extractor(data)
        if md:
            return md
    return None


class LLM:
    def __init__(
        self,
        provider: str = "openai",
        api_key: Optional[str] = None,
        prompt_id: Optional[str] = None,
        openai_base: str = OPENAI_BASE_URL,
        ollama_base: str = OLLAMA_BASE_URL,
        model_name: str = OLLAMA_MODEL,
        timeout: float = 300.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.provider = provider.lower()
        self.api_key = api_key
        self.prompt_id = prompt_id
        self.openai_base = openai_base
        self.ollama_base = ollama_base
        self.model_name = model_name
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_parameters(cls, params: p.Parameters, timeout: float = 300.0, **kwargs) -> "LLM":
        provider = (params.get(p.LLM_PROVIDER) or "openai").lower()
        if provider == "openai":
            return cls(
                provider,
                api_key=params.require(p.OPENAI_API_KEY),
                prompt_id=params.require(p.OPENAI_PROMPT_ID),
                openai_base=params.get(p.OPENAI_BASE_URL, OPENAI_BASE_URL),
                timeout=timeout,
                **kwargs,
            )
        if provider == "ollama":
            return cls(
                provider,
                ollama_base=params.get(p.OLLAMA_BASE_URL, OLLAMA_BASE_URL),
                model_name=params.get(p.OLLAMA_MODEL, OLLAMA_MODEL),
                timeout=timeout,
                **kwargs,
            )
        raise ConfigurationError(f"Unsupported llm-provider: {provider}")

    def generate(self, topic: str) -> str:
        """Return non-empty markdown for ``topic`` or raise GenerationError."""
        log.info("generation_request", provider=self.provider, topic=topic)
        if self.provider == "ollama":
            data = self._ollama_generate(topic)
        else:
            data = self._openai_responses(topic)

        md = extract_markdown(data)
        if not md:
            log.warning("generation_unrecognized_response", sample=orjson.dumps(data).decode()[:400])
            raise GenerationError("Empty generation response")
        log.info("generation_done", provider=self.provider, length=len(md))
        return md

    def _openai_responses(self, topic: str) -> Any:
        url = f"{self.openai_base.rstrip('/')}/responses"
        payload = {"prompt": {"id": str(self.prompt_id), "variables": {"topic": topic}}}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        return self._post("OpenAI", url, payload, headers)

    def _ollama_generate(self, topic: str) -> Any:
        # Ollama /api/generate, single non-streamed completion
        url = f"{self.ollama_base.rstrip('/')}/api/generate"
        payload = {
            "model": self.model_name,
            "prompt": OLLAMA_PROMPT.format(topic=topic),
            "stream": False,
        }
        return self._post("Ollama", url, payload)

    def _post(self, name: str, url: str, payload: dict, headers: Optional[dict] = None) -> Any:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            log.error("generation_transport_error", backend=name, error=str(exc))
            raise GenerationError(f"{name} request failed: {exc}") from exc

        log.info("generation_http_status", backend=name, status=r.status_code)
        if r.is_error:
            log.error("generation_http_error", backend=name, status=r.status_code, body=r.text[:800])
            raise GenerationError(f"{name} {r.status_code}: {r.text[:800]}")
        try:
            return r.json()
        except ValueError as exc:
            raise GenerationError(f"{name} returned a non-JSON body") from exc
