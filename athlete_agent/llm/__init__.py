"""LLM module: prompt-in, text-out clients for the graph stages."""

from .client import ChatModelClient, create_chat_client, parse_json_response

__all__ = ["ChatModelClient", "create_chat_client", "parse_json_response"]
