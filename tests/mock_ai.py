"""Scripted AI backend served through ``httpx.MockTransport``.

Answers the Ollama (``/api/chat``, ``/api/tags``) and OpenAI
(``/v1/chat/completions``, ``/v1/models``) wire shapes from a queue of
canned replies, recording every chat request body.
"""

from __future__ import annotations

import json
from collections import deque
from typing import Union

import httpx

Reply = Union[str, httpx.Response]

DEFAULT_REPLY = "Nothing else to check."


class ScriptedAI:
    def __init__(self) -> None:
        self.replies: deque[Reply] = deque()
        self.requests: list[tuple[str, dict]] = []
        self.ollama_models = ["llama3:latest", "mistral:latest"]
        self.openai_models = ["gpt-4o", "gpt-4o-mini"]

    def reply(self, *items: Reply) -> None:
        self.replies.extend(items)

    def chat_requests(self, path_suffix: str = "") -> list[dict]:
        return [body for path, body in self.requests if path.endswith(path_suffix)]

    def _next(self) -> Reply:
        return self.replies.popleft() if self.replies else DEFAULT_REPLY

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/tags":
            return httpx.Response(
                200, json={"models": [{"name": m} for m in self.ollama_models]},
            )
        if path.endswith("/models") and request.method == "GET":
            return httpx.Response(
                200, json={"data": [{"id": m} for m in self.openai_models]},
            )

        if path == "/api/chat":
            body = json.loads(request.content)
            self.requests.append((path, body))
            item = self._next()
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(
                200,
                json={
                    "message": {"role": "assistant", "content": item},
                    "prompt_eval_count": 120,
                    "eval_count": 30,
                },
            )

        if path.endswith("/chat/completions"):
            body = json.loads(request.content)
            self.requests.append((path, body))
            item = self._next()
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(
                200,
                json={
                    "choices": [{"message": {"role": "assistant", "content": item}}],
                    "usage": {"prompt_tokens": 150, "completion_tokens": 40},
                },
            )

        return httpx.Response(404, json={"error": "not found"})
