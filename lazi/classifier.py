"""Ask a chat model whether a new utterance refers to earlier ones."""

from __future__ import annotations

import json
import logging
from concurrent.futures import Future
from typing import List, Optional, Sequence

import httpx
from pydantic import BaseModel, StrictStr, ValidationError

from .errors import EmptyResponse, EncodingError, InvalidResponse, NetworkError
from .models import Config, ContextQuery
from .remote import DEFAULT_BASE_URL, RemoteClient, api_error_message, auth_headers

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an assistant that helps determine if a user is asking for previously mentioned information."


class _Message(BaseModel):
    content: StrictStr


class _Choice(BaseModel):
    message: _Message


class ChatCompletion(BaseModel):
    choices: List[_Choice]


def build_prompt(query: ContextQuery) -> str:
    return (
        f"Here is the user's most recent transcription: '{query.new_text}'\n"
        f"Previous transcriptions: {json.dumps(query.history, ensure_ascii=False)}\n"
        "Is the user asking to fetch information from any of the previous transcriptions? "
        "Please answer with 'true' or 'false'."
    )


def parse_answer(reply: str) -> bool:
    """Lenient yes/no: any reply mentioning "true" counts as yes."""

    return "true" in reply.strip().lower()


class ContextClassifier(RemoteClient):
    thread_name = "lazi-classify"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        model: str = "gpt-3.5-turbo",
        max_tokens: int = 50,
        timeout: float = 20.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(api_key, base_url=base_url, timeout=timeout, client=client)
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def from_config(cls, config: Config, client: Optional[httpx.Client] = None) -> "ContextClassifier":
        return cls(
            cls._key_from_config(config),
            base_url=config.api_base_url,
            model=config.chat_model,
            max_tokens=config.max_tokens,
            timeout=config.chat_timeout,
            client=client,
        )

    def submit(self, new_text: str, history: Sequence[str]) -> "Future[bool]":
        return self._submit(self.classify, new_text, history)

    def classify(self, new_text: str, history: Sequence[str]) -> bool:
        """Return whether ``new_text`` asks for information from ``history``.

        Raises:
            ConfigurationError: no usable API key.
            EncodingError: the request body could not be serialised.
            NetworkError: the request did not complete.
            EmptyResponse: the endpoint returned no body.
            InvalidResponse: the reply is not a chat completion.
        """

        headers = auth_headers(self._api_key)
        query = ContextQuery(new_text=new_text, history=list(history))
        try:
            body = {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(query)},
                ],
                "temperature": 0.0,
                "max_tokens": self.max_tokens,
                "top_p": 1.0,
                "frequency_penalty": 0.0,
                "presence_penalty": 0.0,
            }
            content = json.dumps(body, allow_nan=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncodingError(f"Could not encode chat request: {exc}") from exc

        headers["Content-Type"] = "application/json"
        logger.info("Checking context against %d previous transcripts", len(query.history))
        try:
            response = self._client.post(
                self._url("chat/completions"),
                content=content,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.RequestError as exc:
            raise NetworkError(f"Chat request failed: {exc}") from exc

        reply = self._parse(response)
        logger.debug("Chat reply: %r", reply)
        return parse_answer(reply)

    def _parse(self, response: httpx.Response) -> str:
        if not response.content:
            raise EmptyResponse(f"Empty response from chat service (HTTP {response.status_code})")
        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponse(f"Chat response is not JSON (HTTP {response.status_code})") from exc
        try:
            completion = ChatCompletion.model_validate(payload)
        except ValidationError as exc:
            detail = api_error_message(payload) or "invalid JSON structure"
            raise InvalidResponse(f"Invalid chat response (HTTP {response.status_code}): {detail}") from exc
        if not completion.choices:
            raise InvalidResponse("Chat response contained no choices")
        return completion.choices[0].message.content
