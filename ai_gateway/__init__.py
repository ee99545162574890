"""
AI gateway: one OpenAI-style chat-completion API in front of OpenAI,
Anthropic, Gemini, Ollama and Cloudflare Workers AI.
"""

__version__ = "0.1.0"
