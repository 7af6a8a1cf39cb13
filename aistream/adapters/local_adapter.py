"""
aistream - Local Provider Adapter

OpenAI-compatible local servers: LM Studio, Ollama, llama.cpp.
"""

from typing import Optional

from ..config import CredentialSource, resolve_local_endpoint
from ..core.models import Provider
from .openai_adapter import OpenAICompatibleAdapter


LOCAL_DEFAULT_MODEL = "local-model"


class LocalAdapter(OpenAICompatibleAdapter):
    """
    Adapter for a local OpenAI-compatible server.

    No API key is needed. The base URL comes from the credential
    source, else LOCAL_AI_URL, else http://localhost:1234, and
    `/v1/chat/completions` is appended once.
    """

    provider = Provider.LOCAL
    requires_api_key = False
    include_stream_usage = False

    def resolve_model(self, requested: Optional[str], credentials: CredentialSource) -> str:
        return requested or LOCAL_DEFAULT_MODEL

    def endpoint(
        self,
        model: str,
        api_key: Optional[str],
        stream: bool,
        base_url: Optional[str] = None,
    ) -> str:
        return resolve_local_endpoint(base_url)
