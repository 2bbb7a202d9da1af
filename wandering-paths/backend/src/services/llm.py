from __future__ import annotations

import os
from typing import Any, Dict, Union

from hello_agents import HelloAgentsLLM, ToolAwareSimpleAgent
from loguru import logger

from config import Configuration
from utils import strip_thinking_tokens

try:
    from google import genai
    GEMINI_AVAILABLE = True
except ImportError:
    GEMINI_AVAILABLE = False

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"


class LLMUnavailable(RuntimeError):
    pass


def init_llm(cfg: Configuration) -> tuple[Union["genai.Client", HelloAgentsLLM], str]:
    """Initialize LLM with Gemini primary and an OpenAI-compatible (e.g. Ollama) fallback."""
    if not cfg.llm_enabled():
        raise LLMUnavailable("no LLM provider configured")

    provider = (cfg.llm_provider or "").lower()
    if provider == "google" and GEMINI_AVAILABLE and cfg.llm_api_key:
        try:
            os.environ["GEMINI_API_KEY"] = cfg.llm_api_key
            client = genai.Client()
            logger.debug("using Gemini model: {}", cfg.llm_model_id or DEFAULT_GEMINI_MODEL)
            return client, "gemini"
        except Exception as exc:
            logger.warning("Gemini initialization failed: {}, falling back", exc)

    kw: Dict[str, Any] = {"temperature": 0.1}
    if cfg.llm_model_id or cfg.local_llm:
        kw["model"] = cfg.llm_model_id or cfg.local_llm
    if cfg.llm_provider:
        kw["provider"] = cfg.llm_provider
    if cfg.llm_base_url:
        kw["base_url"] = cfg.llm_base_url
    elif provider == "ollama":
        kw["base_url"] = cfg.sanitized_ollama_url()
    if cfg.llm_api_key:
        kw["api_key"] = cfg.llm_api_key
    return HelloAgentsLLM(**kw), "agents"


def complete(cfg: Configuration, system_prompt: str, prompt: str, *, name: str = "Assistant") -> str:
    """Run a single prompt and return the raw text answer with thinking blocks removed."""
    client, kind = init_llm(cfg)
    if kind == "gemini":
        response = client.models.generate_content(
            model=cfg.llm_model_id or DEFAULT_GEMINI_MODEL,
            contents=f"{system_prompt}\n\n{prompt}",
        )
        raw = response.text
    else:
        agent = ToolAwareSimpleAgent(
            name=name,
            llm=client,
            system_prompt=system_prompt,
            enable_tool_calling=False,
        )
        raw = agent.run(prompt)
        agent.clear_history()
    return strip_thinking_tokens(raw or "")
