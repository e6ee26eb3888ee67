"""Conversation persistence.

The bridge hands every finished turn to a ``ConversationStore``. Stores must
not raise into the stream: ``persist_turn`` logs and swallows storage errors.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional

import httpx

from mcpgate.schemas import ConversationTurn, TurnState

logger = logging.getLogger(__name__)


class ConversationStore(ABC):
    """Destination for completed, failed and cancelled turns."""

    @abstractmethod
    async def save_turn(self, turn: ConversationTurn) -> None:
        """Store one turn. May raise on storage failure."""

    async def close(self) -> None:
        pass


async def persist_turn(store: Optional[ConversationStore], turn: ConversationTurn) -> bool:
    """Save a turn, logging instead of raising. Returns True when stored."""
    if store is None:
        return False
    try:
        await store.save_turn(turn)
    except Exception as exc:
        logger.error(
            "Failed to persist turn for session %s: %s", turn.session_id or "-", exc, exc_info=True
        )
        return False
    return True


class InMemoryConversationStore(ConversationStore):
    """Keeps turns per session in process memory."""

    def __init__(self) -> None:
        self._turns: Dict[Optional[str], List[ConversationTurn]] = defaultdict(list)

    async def save_turn(self, turn: ConversationTurn) -> None:
        self._turns[turn.session_id].append(turn.model_copy(deep=True))

    def turns(self, session_id: Optional[str] = None) -> List[ConversationTurn]:
        return list(self._turns.get(session_id, []))

    @property
    def all_turns(self) -> List[ConversationTurn]:
        return [turn for turns in self._turns.values() for turn in turns]


class HttpConversationStore(ConversationStore):
    """Posts turns as message rows to an external REST API.

    Each turn becomes two messages: the user's text, then the model's reply
    carrying its function calls and function responses.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Root URL of the conversation API
            api_key: Optional bearer token
            timeout: Request timeout in seconds
            client: Pre-built client (tests); the store then does not close it
        """
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=timeout
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "HttpConversationStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def save_turn(self, turn: ConversationTurn) -> None:
        if not turn.session_id:
            logger.debug("Turn has no session id; not persisted")
            return

        for message in self._messages(turn):
            response = await self.client.post(
                f"/sessions/{turn.session_id}/messages", json=message
            )
            response.raise_for_status()

    @staticmethod
    def _messages(turn: ConversationTurn) -> List[Dict[str, Any]]:
        user_message = {
            "id": str(uuid.uuid4()),
            "content": turn.user_text,
            "sender": "user",
            "timestamp": turn.started_at.isoformat(),
            "is_streaming": False,
        }
        finished_at = turn.finished_at or turn.started_at
        model_message: Dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "content": turn.accumulated_text,
            "sender": "ai",
            "timestamp": finished_at.isoformat(),
            "is_streaming": False,
            "state": turn.state.value,
            "function_calls": [call.model_dump(mode="json") for call in turn.function_calls],
            "function_responses": [
                response.model_dump(mode="json") for response in turn.function_responses
            ],
        }
        if turn.state is TurnState.FAILED and turn.error:
            model_message["error"] = turn.error
        return [user_message, model_message]
