"""Chat backends: where a lab session sends its transcript."""

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from src.schemas.chat import ChatRequest, ChatResponse
from src.services.chat_errors import (
    ChatAPIError,
    ChatNetworkError,
    ChatResponseFormatError,
    ChatTimeoutError,
)

logger = logging.getLogger(__name__)


class ChatBackend(Protocol):
    """Anything that answers a chat request."""

    async def send(self, request: ChatRequest) -> ChatResponse: ...


class HttpChatClient:
    """Chat API reached over HTTP.

    Every failure mode is raised as a ``ChatAPIError`` subclass; the
    caller decides how to surface it.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def send(self, request: ChatRequest) -> ChatResponse:
        """POST the request and decode the reply.

        Raises:
            ChatTimeoutError: The API did not answer in time.
            ChatNetworkError: The API could not be reached.
            ChatAPIError: Non-2xx status (message ``APIエラー: <status>``).
            ChatResponseFormatError: The body is not a chat response.
        """
        payload = request.model_dump(mode="json", by_alias=True)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            ) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.TimeoutException as exc:
            logger.error("Chat API timed out after %.1fs: %s", self.timeout, exc)
            raise ChatTimeoutError(f"timeout: {exc}") from exc

        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            logger.error("Chat API HTTP error %s", status_code)
            raise ChatAPIError(f"APIエラー: {status_code}", status_code=status_code) from exc

        except httpx.TransportError as exc:
            logger.error("Chat API request failed: %s", exc)
            raise ChatNetworkError(f"NetworkError: {exc}") from exc

        except httpx.DecodingError as exc:
            logger.error("Chat API body could not be decoded: %s", exc)
            raise ChatResponseFormatError("Malformed chat response") from exc

        except httpx.RequestError as exc:
            logger.error("Chat API request failed: %s", exc)
            raise ChatNetworkError(f"NetworkError: {exc}") from exc

        except ValueError as exc:
            logger.error("Chat API returned a non-JSON body: %s", exc)
            raise ChatResponseFormatError("Malformed chat response") from exc

        if not isinstance(data, dict):
            raise ChatResponseFormatError("Malformed chat response")

        try:
            return ChatResponse.model_validate(data)
        except PydanticValidationError as exc:
            logger.error("Chat API response failed validation: %s", exc)
            raise ChatResponseFormatError("Malformed chat response") from exc
