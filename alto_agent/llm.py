"""HTTP client for an OpenAI-compatible chat-completion endpoint."""

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

import requests

from .errors import TransportError
from .logger import get_logger
from .sse import iter_records

_log = get_logger(__name__)

CONNECT_TIMEOUT = 30

DEFAULT_SYSTEM_PROMPT = """\
You are Alto, a skilled software engineering assistant running inside the user's project directory.
You help with coding tasks by reading, changing and running code through your tools.

## Tools:
- execute_command: run a shell command from the project root. Set requires_approval to true
  for anything destructive or irreversible (deleting files, installing system-wide software,
  changing system configuration); the user confirms those before they run.
- search_replace: edit a file with anchored operations. Copy the lines to replace exactly,
  and give at least 3 unchanged lines of before_context or after_context so the edit
  cannot land in the wrong place.

## Workflow:
1. Explore before changing anything (ls, cat, grep through execute_command).
2. Make one focused change at a time and verify it (re-read the file, run the tests).
3. Tool results starting with "ERROR:" mean the step failed: read the message and adjust.
4. When a search_replace reports no changes, re-read the file and retry with the exact lines.

## Rules:
- All paths are relative to the project root.
- Prefer acting with a tool over asking the user for information you can look up.
- Keep answers concise and respond in the language the user writes in.
"""


@dataclass
class ModelInfo:
    id: str
    n_ctx_train: Optional[int] = None


class EndpointClient:
    """Streams chat completions and lists models over plain HTTP."""

    def __init__(self, base_url: str, model: str, api_key: Optional[str] = None,
                 timeout: int = 600, temperature: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_payload(self, messages: List[Dict[str, Any]],
                      tools: Optional[List[dict]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "messages": messages, "stream": True}
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        return payload

    def stream_chat(self, messages: List[Dict[str, Any]],
                    tools: Optional[List[dict]] = None) -> Iterator[Dict[str, Any]]:
        """Yield decoded stream records for one completion request.

        The whole request, headers to last byte, is bounded by ``timeout``
        seconds. Any transport failure surfaces as TransportError. Closing
        the generator early releases the connection.
        """
        url = f"{self.base_url}/chat/completions"
        deadline = time.monotonic() + self.timeout
        try:
            response = self.session.post(
                url,
                json=self.build_payload(messages, tools),
                headers=self._headers(),
                stream=True,
                timeout=(min(CONNECT_TIMEOUT, self.timeout), self.timeout),
            )
        except requests.Timeout:
            raise TransportError(f"Request timed out after {self.timeout}s")
        except requests.RequestException as e:
            raise TransportError(f"Cannot connect to {self.base_url}: {e}")

        try:
            if response.status_code >= 400:
                raise TransportError(
                    f"HTTP error {response.status_code}: {response.text[:500]}",
                    status=response.status_code,
                )
            yield from iter_records(self._fragments(response, deadline))
        finally:
            response.close()

    def _fragments(self, response: requests.Response, deadline: float) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=None):
                if time.monotonic() > deadline:
                    raise TransportError(f"Request timed out after {self.timeout}s")
                yield chunk
        except requests.RequestException as e:
            raise TransportError(f"Stream interrupted: {type(e).__name__}: {e}")

    def list_models(self) -> List[ModelInfo]:
        url = f"{self.base_url}/models"
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = self.session.get(url, headers=headers, timeout=CONNECT_TIMEOUT)
        except requests.RequestException as e:
            raise TransportError(f"Cannot connect to {self.base_url}: {e}")
        if response.status_code >= 400:
            raise TransportError(f"HTTP error {response.status_code}", status=response.status_code)
        try:
            body = response.json()
        except ValueError:
            raise TransportError("Model listing is not valid JSON")

        entries = body.get("data") if isinstance(body, dict) else None
        models = []
        for entry in entries or []:
            if not isinstance(entry, dict) or "id" not in entry:
                continue
            meta = entry.get("meta") or {}
            n_ctx = meta.get("n_ctx_train") if isinstance(meta, dict) else None
            models.append(ModelInfo(str(entry["id"]), n_ctx if isinstance(n_ctx, int) else None))
        return models

    def context_window(self) -> Optional[int]:
        """Training context size of the configured model, if the endpoint reports one."""
        try:
            models = self.list_models()
        except TransportError as e:
            _log.warning("Could not read the context window: %s", e)
            return None
        if not models:
            return None
        # Single-model servers often ignore the requested name; fall back to the first entry.
        for info in models:
            if info.id == self.model:
                return info.n_ctx_train
        return models[0].n_ctx_train
