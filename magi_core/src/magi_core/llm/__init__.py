"""Language-model provider clients."""

from magi_core.llm.base import (
    AssistantMessage,
    CompletionClient,
    LLMClientError,
    ToolCall,
    ToolChatModel,
)
from magi_core.llm.claude import ClaudeClient
from magi_core.llm.gemini import GeminiClient
from magi_core.llm.openai_compat import MISTRAL_BASE_URL, XAI_BASE_URL, OpenAIChatClient

__all__ = [
    "AssistantMessage",
    "ClaudeClient",
    "CompletionClient",
    "GeminiClient",
    "LLMClientError",
    "MISTRAL_BASE_URL",
    "OpenAIChatClient",
    "ToolCall",
    "ToolChatModel",
    "XAI_BASE_URL",
]
