"""
llm/client.py

Completion gateway used by every LLM-backed step.
- generate(prompt): single-turn completion
- generate_chat(history, message): multi-turn completion seeded with history
- History is a list of {'role': 'user'|'assistant', 'content': str}
- Failures raise GatewayError; callers pick their own fallback

Environment variables:
- LLM_PROVIDER       (deepseek | ollama) default deepseek
- DEEPSEEK_API_URL   (default: https://api.deepseek.com)
- DEEPSEEK_API_KEY   (required for deepseek)
- DEEPSEEK_MODEL     (default: deepseek-chat)
- OLLAMA_BASE_URL    (default: http://localhost:11434)
- OLLAMA_MODEL       (default: qwen2.5:3b)
- DEEPSEEK_OFFLINE   (set to 1/true to stub responses without calling the API)
"""

import logging
import os

import requests

from assistant.errors import GatewayError


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a concise, friendly personal assistant. You help with research, "
    "scheduling calendar events and writing emails. Keep replies short and conversational."
)


class CompletionGateway:
    def __init__(self, provider=None, temperature=0.3, chat_temperature=0.7, timeout=30):
        self.provider = (provider or os.getenv("LLM_PROVIDER", "deepseek")).strip().lower()
        self.offline = os.getenv("DEEPSEEK_OFFLINE", "").strip().lower() in {"1", "true", "yes"}
        self.temperature = temperature
        self.chat_temperature = chat_temperature
        self.timeout = timeout

    def generate(self, prompt):
        """Single-turn completion. Returns the model text, trimmed."""
        return self._complete([{"role": "user", "content": prompt}], self.temperature)

    def generate_chat(self, history, message, system_prompt=SYSTEM_PROMPT):
        """Multi-turn completion: system prompt, prior turns, then the new message."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        for turn in history or []:
            if turn.get("role") in {"user", "assistant"}:
                messages.append({"role": turn["role"], "content": turn.get("content", "")})
        messages.append({"role": "user", "content": message})
        return self._complete(messages, self.chat_temperature)

    def _complete(self, messages, temperature):
        if self.offline:
            preview = (messages[-1]["content"] or "").strip().splitlines()
            return f"[offline] {preview[0][:120]}" if preview else "[offline] OK"
        if self.provider == "ollama":
            return self._ollama(messages, temperature)
        return self._deepseek(messages, temperature)

    def _ollama(self, messages, temperature):
        base = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434").rstrip("/")
        model = os.getenv("OLLAMA_MODEL", "qwen2.5:3b")
        try:
            resp = requests.post(
                f"{base}/api/chat",
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                json={"model": model, "messages": messages, "stream": False,
                      "options": {"temperature": temperature, "num_ctx": 4096, "num_predict": 512}},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.HTTPError as http_err:
            status = getattr(http_err.response, "status_code", None)
            raise GatewayError(f"Ollama error (HTTP {status}). Is 'ollama serve' running?") from http_err
        except requests.RequestException as exc:
            raise GatewayError("Unable to reach Ollama at OLLAMA_BASE_URL") from exc
        try:
            content = data["message"]["content"]
        except (AttributeError, IndexError, TypeError, KeyError) as exc:
            raise GatewayError("Ollama returned an unexpected response shape") from exc
        return _non_empty(content)

    def _deepseek(self, messages, temperature):
        base = os.getenv("DEEPSEEK_API_URL", "https://api.deepseek.com")
        key = os.getenv("DEEPSEEK_API_KEY", "")
        model = os.getenv("DEEPSEEK_MODEL", "deepseek-chat")
        endpoint = f"{base.rstrip('/')}/v1/chat/completions"
        headers = {"Authorization": f"Bearer {key}", "Content-Type": "application/json", "Accept": "application/json"}
        try:
            resp = requests.post(
                endpoint,
                headers=headers,
                json={"model": model, "messages": messages, "temperature": temperature},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.HTTPError as http_err:
            status = getattr(http_err.response, "status_code", None)
            raise GatewayError(f"DeepSeek error (HTTP {status}). Check DEEPSEEK_API_KEY.") from http_err
        except requests.RequestException as exc:
            raise GatewayError("Network issue while contacting the model") from exc
        try:
            content = data["choices"][0]["message"]["content"]
        except (AttributeError, IndexError, TypeError, KeyError) as exc:
            raise GatewayError("DeepSeek returned an unexpected response shape") from exc
        return _non_empty(content)


def _non_empty(content):
    text = content.strip() if isinstance(content, str) else ""
    if not text:
        raise GatewayError("Model returned an empty response")
    return text
