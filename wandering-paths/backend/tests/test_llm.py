from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from config import Configuration
from services.llm import LLMUnavailable, complete, init_llm


def test_init_without_provider_raises() -> None:
    with pytest.raises(LLMUnavailable):
        init_llm(Configuration())


def test_init_ollama_uses_sanitized_base_url() -> None:
    cfg = Configuration(llm_provider="ollama", local_llm="llama3", ollama_base_url="http://box:11434/")
    with patch("services.llm.HelloAgentsLLM") as llm_cls:
        client, kind = init_llm(cfg)
    assert kind == "agents"
    assert client is llm_cls.return_value
    kwargs = llm_cls.call_args.kwargs
    assert kwargs["base_url"] == "http://box:11434/v1"
    assert kwargs["model"] == "llama3"
    assert kwargs["provider"] == "ollama"


def test_complete_strips_thinking() -> None:
    cfg = Configuration(llm_provider="ollama", local_llm="llama3")
    agent = MagicMock()
    agent.run.return_value = "<think>hmm</think>{\"ok\": true}"
    with patch("services.llm.HelloAgentsLLM"), patch("services.llm.ToolAwareSimpleAgent", return_value=agent) as agent_cls:
        out = complete(cfg, "system", "prompt", name="Tester")
    assert out == '{"ok": true}'
    assert agent_cls.call_args.kwargs["enable_tool_calling"] is False
    agent.run.assert_called_once_with("prompt")
    agent.clear_history.assert_called_once()
