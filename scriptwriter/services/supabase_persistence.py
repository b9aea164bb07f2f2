"""
Supabase Persistence Service for the scriptwriter

Stores story tree scenelets in the Supabase `scenelets` table. Unlike
artifact storage, scenelet writes are load-bearing for resume, so
failures raise PersistenceError instead of being swallowed.
"""

import logging
import os
from typing import Any, Dict, List, Optional

from ..models import CreateSceneletInput, SceneletRecord
from .errors import PersistenceError
from .persistence import SceneletPersistence

logger = logging.getLogger("scriptwriter.supabase")

SCENELETS_TABLE = "scenelets"


class SupabaseSceneletPersistence(SceneletPersistence):
    """Scenelet persistence backed by Supabase."""

    def __init__(self, supabase_url: Optional[str] = None, supabase_key: Optional[str] = None):
        """
        Initialize the Supabase persistence service.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase service role key (for server-side operations)
        """
        self.supabase_url = supabase_url or os.getenv("SUPABASE_URL")
        self.supabase_key = supabase_key or os.getenv("SUPABASE_SERVICE_KEY")
        self.client = None
        self._connected = False

    async def connect(self) -> bool:
        """
        Connect to Supabase.

        Returns:
            True if connection successful, False otherwise
        """
        if not self.supabase_url or not self.supabase_key:
            logger.warning("[connect] SUPABASE_URL or SUPABASE_SERVICE_KEY not set")
            return False

        try:
            from supabase import Client, create_client
            self.client: Client = create_client(self.supabase_url, self.supabase_key)
            self._connected = True
            return True
        except Exception as e:
            logger.error(f"[connect] Failed to connect to Supabase: {e}")
            self._connected = False
            return False

    @property
    def is_connected(self) -> bool:
        """Check if connected to Supabase."""
        return self._connected and self.client is not None

    def _require_client(self):
        if not self.is_connected:
            raise PersistenceError("Supabase client not connected. Call connect() first.")
        return self.client

    async def create_scenelet(self, scenelet: CreateSceneletInput) -> SceneletRecord:
        client = self._require_client()
        data = {
            "story_id": scenelet.story_id,
            "parent_id": scenelet.parent_id,
            "choice_label_from_parent": scenelet.choice_label_from_parent,
            "content": scenelet.content.to_payload(),
            "is_branch_point": False,
            "is_terminal_node": False,
        }

        try:
            result = client.table(SCENELETS_TABLE).insert(data).execute()
        except Exception as e:
            raise PersistenceError(
                f"Failed to create scenelet for story {scenelet.story_id} "
                f"(parent {scenelet.parent_id}): {e}"
            ) from e

        if not result.data:
            raise PersistenceError(
                f"Supabase returned no row when creating scenelet for story {scenelet.story_id}."
            )
        return _row_to_record(result.data[0])

    async def mark_scenelet_as_branch_point(self, scenelet_id: str, choice_prompt: str) -> None:
        await self._update(scenelet_id, {"is_branch_point": True, "choice_prompt": choice_prompt})

    async def mark_scenelet_as_terminal(self, scenelet_id: str) -> None:
        await self._update(scenelet_id, {"is_terminal_node": True})

    async def has_scenelets_for_story(self, story_id: str) -> bool:
        client = self._require_client()
        try:
            result = (
                client.table(SCENELETS_TABLE)
                .select("id")
                .eq("story_id", story_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to check scenelets for story {story_id}: {e}") from e
        return bool(result.data)

    async def list_scenelets_by_story(self, story_id: str) -> List[SceneletRecord]:
        client = self._require_client()
        try:
            result = (
                client.table(SCENELETS_TABLE)
                .select("*")
                .eq("story_id", story_id)
                .order("created_at")
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to list scenelets for story {story_id}: {e}") from e
        return [_row_to_record(row) for row in result.data or []]

    async def _update(self, scenelet_id: str, data: Dict[str, Any]) -> None:
        client = self._require_client()
        try:
            result = client.table(SCENELETS_TABLE).update(data).eq("id", scenelet_id).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to update scenelet {scenelet_id}: {e}") from e
        if not result.data:
            raise PersistenceError(f"Scenelet {scenelet_id} not found for update.")


def _row_to_record(row: Dict[str, Any]) -> SceneletRecord:
    return SceneletRecord(
        id=str(row["id"]),
        story_id=str(row["story_id"]),
        parent_id=str(row["parent_id"]) if row.get("parent_id") is not None else None,
        choice_label_from_parent=row.get("choice_label_from_parent"),
        choice_prompt=row.get("choice_prompt"),
        content=row.get("content"),
        is_branch_point=bool(row.get("is_branch_point")),
        is_terminal_node=bool(row.get("is_terminal_node")),
        created_at=row.get("created_at"),
    )
