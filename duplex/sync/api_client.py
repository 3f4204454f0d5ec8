"""Duplex API client - uploads conversations for extraction."""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from ..config import DEFAULT_API_URL, DEFAULT_WORKSPACE_ID
from ..parsers import Conversation
from .http_client import BaseApiClient, DuplexAuthError, DuplexClientError
from .retry import RetryConfig

__all__ = [
    "DuplexApiClient",
    "DuplexClientError",
    "DuplexAuthError",
    "ExtractionResponse",
    "EXTRACT_ENDPOINT",
]

logger = logging.getLogger(__name__)

EXTRACT_ENDPOINT = "extraction/conversations/extract"


@dataclass
class ExtractionResponse:
    """Server acknowledgement for an uploaded conversation."""

    workflow_id: str
    status: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractionResponse":
        if not isinstance(data, dict):
            raise DuplexClientError("Extraction response is not a JSON object")
        workflow_id = data.get("workflowId")
        if not workflow_id:
            raise DuplexClientError("Extraction response missing workflowId")
        return cls(workflow_id=str(workflow_id), status=data.get("status"))


class DuplexApiClient(BaseApiClient):
    """Client for the Duplex extraction API."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        timeout: int = 30,
        retry_config: Optional[RetryConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(
            api_url=api_url,
            timeout=timeout,
            retry_config=retry_config,
            session=session,
        )

    def upload_conversation(
        self,
        conversation: Conversation,
        workspace_id: str = DEFAULT_WORKSPACE_ID,
        token: Optional[str] = None,
    ) -> ExtractionResponse:
        """Upload one conversation file's content.

        Args:
            conversation: Parsed conversation
            workspace_id: Target workspace
            token: Bearer token, or None for an unauthenticated request

        Returns:
            ExtractionResponse with the workflow id

        Raises:
            DuplexAuthError: Credential missing or rejected
            DuplexClientError: Any other failure
        """
        payload = {
            "content": conversation.content,
            "sourcePath": conversation.source_path,
            "source": conversation.source,
            "workspaceId": workspace_id,
        }
        logger.debug(
            f"Uploading {conversation.source_path} ({len(conversation.content)} chars)"
        )
        data = self._request("POST", EXTRACT_ENDPOINT, data=payload, token=token)
        response = ExtractionResponse.from_dict(data)
        logger.info(f"Uploaded {conversation.source_path} -> workflow {response.workflow_id}")
        return response
