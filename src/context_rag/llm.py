"""Chat/embedding client construction and JSON response handling."""

from __future__ import annotations

import json
import os
import re
from typing import Any, Protocol

from langchain_core.messages import BaseMessage

_CODE_FENCE = re.compile(r"```(?:json)?\s*")


class ChatModel(Protocol):
    """Anything with LangChain's async `ainvoke` returning a message."""

    async def ainvoke(self, input: Any, config: Any | None = None, **kwargs: Any) -> Any:
        ...


def create_json_chat_model(*, max_tokens: int = 200) -> Any:
    """Build an OpenAI-compatible chat model forced into JSON-object mode.

    Returns None when `OPENAI_API_KEY` is not configured so callers can fall
    back to offline behavior.
    """

    if not os.getenv("OPENAI_API_KEY"):
        return None

    from langchain_openai import ChatOpenAI

    llm = ChatOpenAI(
        model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        base_url=os.getenv("OPENAI_BASE_URL") or None,
        temperature=0,
        max_tokens=max_tokens,
    )
    return llm.bind(response_format={"type": "json_object"})


def create_embeddings() -> Any:
    """Build an OpenAI embeddings client, or None without an API key."""

    if not os.getenv("OPENAI_API_KEY"):
        return None

    from langchain_openai import OpenAIEmbeddings

    return OpenAIEmbeddings(
        model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        base_url=os.getenv("OPENAI_BASE_URL") or None,
    )


def response_text(message: Any) -> str:
    """Extract plain text from a chat model response."""

    if isinstance(message, str):
        return message
    content = message.content if isinstance(message, BaseMessage) else getattr(
        message, "content", ""
    )
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts).strip()
    return str(content or "").strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a JSON object, tolerating markdown code fences.

    Raises:
        ValueError: if the text is empty, not JSON, or not a JSON object.
    """

    cleaned = _CODE_FENCE.sub("", text).strip()
    if not cleaned:
        raise ValueError("Empty model response")
    payload = json.loads(cleaned)
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload
