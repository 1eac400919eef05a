"""Tool-calling chat service client (OpenAI-compatible chat completions over httpx)

Streaming responses arrive as server-sent events. Text deltas are yielded as
they arrive; tool-call deltas are aggregated by index and yielded once, as a
single chunk, when the stream ends.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import httpx

from nova_bank.config import settings
from nova_bank.domain.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """One function call requested by the model; arguments stay raw JSON text"""

    id: str
    name: str
    arguments: str = ""


@dataclass
class ToolResponse:
    """Result of one tool call, sent back on the next round"""

    call_id: str
    name: str
    response: Dict[str, Any]


@dataclass
class ChatChunk:
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)


# A round is started either by user text or by the results of the previous round's calls
ChatMessage = Union[str, List[ToolResponse]]


class ChatSession:
    """
    One conversation with a fixed system instruction and tool list.

    History is kept client-side and grows by one assistant message per
    completed round, plus the user text or tool results that started it.
    A round that fails mid-stream leaves no assistant message behind.
    """

    def __init__(
        self,
        client: "ChatClient",
        system_instruction: str,
        tools: List[Dict[str, Any]],
    ):
        self.client = client
        self.tools = tools
        self.history: List[Dict[str, Any]] = [{"role": "system", "content": system_instruction}]

    def _append_message(self, message: ChatMessage) -> None:
        if isinstance(message, str):
            self.history.append({"role": "user", "content": message})
            return
        for part in message:
            self.history.append(
                {
                    "role": "tool",
                    "tool_call_id": part.call_id,
                    "content": json.dumps(part.response, default=str),
                }
            )

    async def send_message_stream(self, message: ChatMessage) -> AsyncIterator[ChatChunk]:
        """
        Send one message and stream the reply.

        Raises:
            ExternalServiceError: On transport errors, HTTP errors, or malformed events
        """
        self._append_message(message)
        payload = {
            "model": self.client.model,
            "messages": self.history,
            "stream": True,
        }
        if self.tools:
            payload["tools"] = self.tools

        text_parts: List[str] = []
        buffers: Dict[int, Dict[str, str]] = {}

        try:
            async with self.client.http.stream(
                "POST",
                "/chat/completions",
                json=payload,
                headers=self.client.headers,
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break

                    event = json.loads(data)
                    choices = event.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta") or {}

                    # Aggregate tool-call fragments by index (index 0 is valid)
                    for fragment in delta.get("tool_calls") or []:
                        index = fragment.get("index")
                        if index is None:
                            index = len(buffers)
                        buf = buffers.setdefault(index, {"id": f"call_{index}", "name": "", "arguments": ""})
                        if fragment.get("id"):
                            buf["id"] = fragment["id"]
                        function = fragment.get("function") or {}
                        if function.get("name"):
                            buf["name"] = function["name"]
                        if function.get("arguments"):
                            buf["arguments"] += function["arguments"]

                    if delta.get("content"):
                        text_parts.append(delta["content"])
                        yield ChatChunk(text=delta["content"])

        except httpx.TimeoutException as e:
            raise ExternalServiceError(f"Chat service timeout after {self.client.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(f"Chat service error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ExternalServiceError(f"Chat service unreachable: {e}") from e
        except (ValueError, TypeError, AttributeError) as e:
            raise ExternalServiceError(f"Invalid event from chat service: {e}") from e

        tool_calls = [
            ToolCall(id=buf["id"], name=buf["name"], arguments=buf["arguments"])
            for _, buf in sorted(buffers.items())
            if buf["name"]
        ]

        assistant: Dict[str, Any] = {"role": "assistant", "content": "".join(text_parts) or None}
        if tool_calls:
            assistant["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments or "{}"},
                }
                for call in tool_calls
            ]
            yield ChatChunk(tool_calls=tool_calls)
        self.history.append(assistant)


class ChatClient:
    """Client for the external chat completions service"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url or settings.chat_api_base
        self.model = model or settings.chat_model
        self.timeout = timeout or settings.http_timeout_seconds
        api_key = api_key if api_key is not None else settings.chat_api_key
        self.headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.http = http or httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    def start_session(self, system_instruction: str, tools: List[Dict[str, Any]]) -> ChatSession:
        return ChatSession(self, system_instruction, tools)

    async def generate_structured(
        self,
        prompt: str,
        schema: Dict[str, Any],
        schema_name: str,
        image: Optional[bytes] = None,
        mime_type: str = "image/jpeg",
    ) -> Dict[str, Any]:
        """
        Non-streaming call constrained to a JSON schema; optional image input.

        Raises:
            ExternalServiceError: On timeout, HTTP errors, or output that is not JSON
        """
        content: Union[str, List[Dict[str, Any]]] = prompt
        if image is not None:
            encoded = base64.b64encode(image).decode("ascii")
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
            ]

        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema, "strict": True},
            },
        }

        try:
            response = await self.http.post("/chat/completions", json=payload, headers=self.headers)
            response.raise_for_status()
            body = response.json()
            return json.loads(body["choices"][0]["message"]["content"])

        except httpx.TimeoutException as e:
            raise ExternalServiceError(f"Chat service timeout after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(f"Chat service error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ExternalServiceError(f"Chat service unreachable: {e}") from e
        except (KeyError, IndexError, ValueError, TypeError) as e:
            raise ExternalServiceError(f"Invalid structured output from chat service: {e}") from e

    async def aclose(self) -> None:
        await self.http.aclose()
