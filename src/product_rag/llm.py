"""Factories for LangChain chat/embedding clients and response helpers."""

from __future__ import annotations

import os
from typing import Any


def create_chat_model() -> Any | None:
    """Build the chat model from the environment, or None when unconfigured.

    Azure OpenAI is preferred when its endpoint is set; otherwise a plain
    OpenAI key is used.
    """

    azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
    azure_key = os.getenv("AZURE_OPENAI_API_KEY")
    if azure_endpoint and azure_key:
        from langchain_openai import AzureChatOpenAI

        return AzureChatOpenAI(
            azure_endpoint=azure_endpoint,
            api_key=azure_key,
            api_version=os.getenv("OPENAI_API_VERSION", "2024-12-01-preview"),
            azure_deployment=os.getenv("AZURE_OPENAI_CHAT_DEPLOYMENT", "o3-mini"),
        )

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


def create_embeddings() -> Any | None:
    """Build the LangChain embeddings client from the environment, or None."""

    azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
    azure_key = os.getenv("AZURE_OPENAI_API_KEY")
    if azure_endpoint and azure_key:
        from langchain_openai import AzureOpenAIEmbeddings

        return AzureOpenAIEmbeddings(
            azure_endpoint=azure_endpoint,
            api_key=azure_key,
            api_version=os.getenv("OPENAI_API_VERSION", "2024-12-01-preview"),
            azure_deployment=os.getenv(
                "AZURE_OPENAI_EMBEDDING_DEPLOYMENT", "text-embedding-ada-002"
            ),
        )

    if not os.getenv("OPENAI_API_KEY"):
        return None

    from langchain_openai import OpenAIEmbeddings

    return OpenAIEmbeddings(
        model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-ada-002")
    )


def message_text(message: Any) -> str:
    """Flatten a chat model response into plain text."""

    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    if content is None:
        return ""
    return str(content).strip()
