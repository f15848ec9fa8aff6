"""LLM runtime interface.

Pipeline components talk to the model through `LLMRuntime` so adapters (and
test fakes) can be swapped. Message content coming back from a provider is
either a plain string or a list of typed parts (text, reasoning, images...);
`normalize_content` maps both onto `LLMContent` and `content_text` keeps only
the text parts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class PartsContent:
    parts: tuple[dict[str, Any], ...]


LLMContent = Union[TextContent, PartsContent]


def normalize_content(raw: Any) -> Optional[LLMContent]:
    if isinstance(raw, str):
        return TextContent(raw)
    if isinstance(raw, list):
        return PartsContent(tuple(p for p in raw if isinstance(p, dict)))
    return None


def content_text(content: Optional[LLMContent]) -> str:
    if content is None:
        return ""
    if isinstance(content, TextContent):
        return content.text
    texts = [p.get("text") for p in content.parts if p.get("type") == "text"]
    return "".join(t for t in texts if isinstance(t, str))


@dataclass(frozen=True)
class LLMRequest:
    messages: list[dict[str, Any]]
    model: str
    max_tokens: int
    timeout_seconds: int
    temperature: float = 0.1
    response_format: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class ChatCompletion:
    """First choice of a chat completion. `content` is None when the provider returned no choices."""

    content: Optional[LLMContent]
    finish_reason: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_choice(self) -> bool:
        return self.content is not None

    @property
    def text(self) -> str:
        return content_text(self.content)

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"


class LLMRuntime:
    async def chat(self, req: LLMRequest) -> ChatCompletion:  # pragma: no cover - interface
        raise NotImplementedError


def json_schema_format(name: str, schema: dict[str, Any]) -> dict[str, Any]:
    return {"type": "json_schema", "json_schema": {"name": name, "strict": True, "schema": schema}}
