"""
First-aid advisory for the reporting client.

Fetches short guidance from an OpenAI-compatible chat endpoint through
LangChain. The fetch runs beside the emergency flow, never on its path: every
failure, including a missing credential or a reply later than the configured
bound, yields the fixed offline advisory instead of an error.
"""

import asyncio
import logging
import os
from typing import Any, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field

from ..core.errors import AdvisoryUnavailable

logger = logging.getLogger(__name__)


FALLBACK_ADVICE = (
    "Stay calm. Keep the patient comfortable and monitor breathing until help arrives."
)

SYSTEM_INSTRUCTION = (
    "You are a first-aid assistant. Provide 4 short, life-saving bullet points "
    "for a medical emergency. Start with 'Help is on the way.' End with "
    "'Disclaimer: Not a substitute for professional help.'"
)

DEFAULT_CONTEXT = "General medical emergency at my location."


class AdvisoryConfig(BaseModel):
    """Configuration for the advisory endpoint."""

    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for the OpenAI-compatible API endpoint",
    )
    api_key: Optional[str] = Field(
        default=None, description="Bearer credential; without it the fallback is used"
    )
    model_name: str = Field(default="gpt-4o-mini", description="Chat model to use")
    temperature: float = Field(default=0.3, description="Sampling temperature")
    max_tokens: int = Field(default=300, description="Maximum tokens in the advisory")
    timeout: float = Field(
        default=10.0, gt=0, description="Seconds to wait before falling back"
    )

    @classmethod
    def from_env(cls) -> "AdvisoryConfig":
        """Create configuration from environment variables."""
        return cls(
            base_url=os.getenv("LLM_BASE_URL", "https://api.openai.com/v1"),
            api_key=os.getenv("LLM_API_KEY") or None,
            model_name=os.getenv("LLM_MODEL_NAME", "gpt-4o-mini"),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.3")),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "300")),
            timeout=float(os.getenv("ADVISORY_TIMEOUT_SECONDS", "10")),
        )


class AdvisorySurface:
    """
    The advisory text shown to the reporter.

    Several fetches may be in flight after repeated triggers; only the most
    recently started one may publish, so a slow earlier reply never replaces
    a newer one.
    """

    def __init__(self):
        self.text = ""
        self.loading = False
        self._generation = 0

    def begin(self) -> int:
        self._generation += 1
        self.loading = True
        return self._generation

    def publish(self, generation: int, text: str) -> bool:
        if generation != self._generation:
            logger.debug(f"Discarding stale advisory from request {generation}")
            return False
        self.text = text
        self.loading = False
        return True


class AdvisoryFallbackService:
    """Advisory client that fails closed to FALLBACK_ADVICE."""

    def __init__(self, config: AdvisoryConfig, llm: Optional[Any] = None):
        """
        Args:
            config: Endpoint, credential and timeout settings
            llm: Chat model to use instead of building one from `config`
        """
        self.config = config
        self.llm = llm if llm is not None else self._build_llm(config)

    @staticmethod
    def _build_llm(config: AdvisoryConfig) -> Optional[ChatOpenAI]:
        if not config.api_key:
            logger.warning("LLM_API_KEY not configured; advisories will use the offline text")
            return None
        return ChatOpenAI(
            base_url=config.base_url,
            api_key=config.api_key,
            model=config.model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
            max_retries=0,
        )

    async def fetch_advice(self, context: str = DEFAULT_CONTEXT) -> str:
        """
        Fetch first-aid guidance for the given situation.

        Args:
            context: Short description of the emergency

        Returns:
            The generated advisory, or FALLBACK_ADVICE on any failure or when
            no reply arrives within `config.timeout` seconds. Never raises.
        """
        try:
            return await asyncio.wait_for(self._generate(context), timeout=self.config.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Advisory not received within {self.config.timeout}s; using offline advisory"
            )
        except AdvisoryUnavailable as e:
            logger.warning(f"Advisory unavailable: {e}; using offline advisory")
        return FALLBACK_ADVICE

    async def update_surface(
        self, surface: AdvisorySurface, context: str = DEFAULT_CONTEXT
    ) -> str:
        generation = surface.begin()
        text = await self.fetch_advice(context)
        surface.publish(generation, text)
        return text

    async def _generate(self, context: str) -> str:
        if self.llm is None:
            raise AdvisoryUnavailable("no credential configured")

        try:
            response = await self.llm.ainvoke(
                [SystemMessage(content=SYSTEM_INSTRUCTION), HumanMessage(content=context)]
            )
        except Exception as e:
            raise AdvisoryUnavailable(f"{type(e).__name__}: {e}") from e

        text = _message_text(getattr(response, "content", None))
        if not text:
            raise AdvisoryUnavailable("empty reply")
        return text


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts).strip()
    return ""


_advisory_service_instance: Optional[AdvisoryFallbackService] = None


def get_advisory_service() -> AdvisoryFallbackService:
    """
    Get or create the singleton advisory service.

    Returns:
        AdvisoryFallbackService configured from environment variables
    """
    global _advisory_service_instance
    if _advisory_service_instance is None:
        _advisory_service_instance = AdvisoryFallbackService(AdvisoryConfig.from_env())
    return _advisory_service_instance
