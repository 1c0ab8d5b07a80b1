"""LLM client abstraction with Groq (primary) and Google AI (fallback)."""

import logging
from abc import ABC, abstractmethod

from context_engine.config.settings import get_settings

logger = logging.getLogger(__name__)


class LLMClient(ABC):
    @abstractmethod
    async def generate(self, messages: list[dict], model: str) -> dict:
        """Return {"content": str, "finish_reason": str, "input_tokens": int, "output_tokens": int}."""
        ...


class GroqClient(LLMClient):
    def __init__(self, api_key: str):
        from groq import AsyncGroq
        self._client = AsyncGroq(api_key=api_key)

    async def generate(self, messages: list[dict], model: str) -> dict:
        response = await self._client.chat.completions.create(
            model=model,
            messages=messages,
        )
        choice = response.choices[0]
        return {
            "content": choice.message.content or "",
            "finish_reason": choice.finish_reason,
            "input_tokens": response.usage.prompt_tokens if response.usage else 0,
            "output_tokens": response.usage.completion_tokens if response.usage else 0,
        }


class GoogleAIClient(LLMClient):
    def __init__(self, api_key: str):
        import google.generativeai as genai
        genai.configure(api_key=api_key)
        self._genai = genai

    async def generate(self, messages: list[dict], model: str) -> dict:
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system") or None
        prompt = "\n\n".join(m["content"] for m in messages if m["role"] != "system")
        gen_model = self._genai.GenerativeModel(model, system_instruction=system)
        response = await gen_model.generate_content_async(prompt)
        usage = response.usage_metadata
        return {
            "content": response.text,
            "finish_reason": "stop",
            "input_tokens": usage.prompt_token_count if usage else 0,
            "output_tokens": usage.candidates_token_count if usage else 0,
        }


class FallbackLLMClient(LLMClient):
    """Try the primary client; on any error use the fallback client and model."""

    def __init__(self, primary: LLMClient, fallback: LLMClient, fallback_model: str):
        self.primary = primary
        self.fallback = fallback
        self.fallback_model = fallback_model

    async def generate(self, messages: list[dict], model: str) -> dict:
        try:
            return await self.primary.generate(messages, model)
        except Exception:
            logger.warning("Primary LLM failed, falling back to %s", self.fallback_model)
            return await self.fallback.generate(messages, self.fallback_model)


# Singletons
_clients: dict[str, LLMClient] = {}


def get_llm_client(provider: str = "groq") -> LLMClient:
    if provider not in _clients:
        settings = get_settings()
        if provider == "groq":
            _clients[provider] = GroqClient(settings.GROQ_API_KEY)
        elif provider == "google":
            _clients[provider] = GoogleAIClient(settings.GOOGLE_AI_API_KEY)
        elif provider == "fallback":
            _clients[provider] = FallbackLLMClient(
                get_llm_client("groq"), get_llm_client("google"), settings.FALLBACK_MODEL
            )
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")
    return _clients[provider]
