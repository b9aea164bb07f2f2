"""
Replay client that serves recorded scriptwriter responses in order.
Used for offline runs and tests; never touches the network.
"""

import json
import logging
from pathlib import Path
from typing import Any, List, Optional, Union

from .errors import EmptyModelResponseError, ModelApiError
from .model_client import JsonModelClient

logger = logging.getLogger("scriptwriter.fixture_client")


class FixtureJsonClient(JsonModelClient):
    """Returns one queued response per call; fails once the queue is exhausted."""

    def __init__(self, responses: List[Any]):
        self._responses = [
            item if isinstance(item, str) else json.dumps(item, ensure_ascii=False)
            for item in responses
        ]
        self.calls: List[str] = []

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "FixtureJsonClient":
        """Load a JSON array of responses (objects or raw strings)."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"Fixture file {path} must contain a JSON array of responses.")
        logger.info(f"[from_file] Loaded {len(data)} fixture responses from {path}")
        return cls(data)

    @property
    def remaining(self) -> int:
        return len(self._responses)

    async def generate_json(
        self,
        system_instruction: str,
        user_content: str,
        timeout_ms: Optional[int] = None,
    ) -> str:
        self.calls.append(user_content)
        if not self._responses:
            raise ModelApiError("Fixture responses exhausted.", is_retryable=False)
        response = self._responses.pop(0)
        if not response.strip():
            raise EmptyModelResponseError()
        return response
