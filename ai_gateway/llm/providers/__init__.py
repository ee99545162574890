from .anthropic import AnthropicAdapter
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter
from .openai_compat import OpenAICompatibleAdapter
from .workers_ai import WorkersAIAdapter

__all__ = [
    "AnthropicAdapter",
    "GeminiAdapter",
    "OllamaAdapter",
    "OpenAICompatibleAdapter",
    "WorkersAIAdapter",
]
