"""HTTP client for the answer backend."""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from ..config import BackendConfig
from ..errors import RequestFailed
from .models import AnswerSet, PendingSubmission

logger = logging.getLogger(__name__)


class AnswerClient:
    """Posts questions to the backend and parses the AnswerSet reply."""

    def __init__(self, config: BackendConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.url = config.ask_url
        self._client = client or httpx.AsyncClient(timeout=config.timeout_s)

    async def ask(self, submission: PendingSubmission) -> AnswerSet:
        """Send one multipart request. Raises RequestFailed on any failure."""
        # question goes as a filename-less part so the body is always multipart
        parts = [("question", (None, submission.text.encode("utf-8")))]
        attachment = submission.attachment
        if attachment is not None:
            parts.append(("file", (attachment.filename, attachment.content, attachment.content_type)))

        logger.debug(f"POST {self.url} ({len(submission.text)} chars, file={attachment is not None})")

        try:
            response = await self._client.post(self.url, files=parts)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RequestFailed(f"Request to {self.url} failed: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise RequestFailed(f"Response is not JSON: {e}") from e

        try:
            return AnswerSet.model_validate(payload)
        except ValidationError as e:
            raise RequestFailed(f"Response is not an answer set: {e}") from e

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
