"""
Debug logging for remote model interactions.

When enabled, every generation attempt made for a conversation is appended
to ``<debug_dir>/<conversation_id>/conversation.jsonl``: the request payload,
the raw model text, the generation settings, and the failure (if any).
"""
import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from kardia_engine.llm.base import GenerationRequest

logger = logging.getLogger(__name__)


class DebugLogger:
    """Per-conversation JSONL log of model interactions."""

    def __init__(self, debug_dir: Optional[Path] = None, enabled: bool = False):
        """Initialize debug logger.

        Args:
            debug_dir: Directory for debug logs. Defaults to data/debug_logs/conversations/
            enabled: Whether debug logging is enabled (system config ``debug``)
        """
        if debug_dir is None:
            debug_dir = Path("data/debug_logs/conversations")

        self.debug_dir = Path(debug_dir)
        self.enabled = enabled

        if self.enabled:
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Debug logger initialized: {self.debug_dir}")

    def log_model_interaction(
        self,
        conversation_id: str,
        model: str,
        request: GenerationRequest,
        response: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """Append one interaction record. Never raises."""
        if not self.enabled:
            return

        try:
            conversation_dir = self.debug_dir / conversation_id
            conversation_dir.mkdir(parents=True, exist_ok=True)

            record = {
                "timestamp": datetime.now().isoformat(),
                "model": model,
                "request": request.model_dump(),
                "response": response,
                "settings": settings or {},
                "metadata": metadata or {},
                "error": error,
            }

            with open(conversation_dir / "conversation.jsonl", "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")

            logger.debug(
                f"[DEBUG LOG] model={model} | conversation={conversation_id} | "
                f"payload_chars={request.char_count()}"
            )
        except Exception as e:
            logger.error(f"Failed to write debug log: {e}", exc_info=True)

    def get_conversation_log(self, conversation_id: str) -> List[Dict[str, Any]]:
        """Read all logged interactions for a conversation."""
        log_file = self.debug_dir / conversation_id / "conversation.jsonl"
        if not log_file.exists():
            return []

        with open(log_file, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]

    def clear_conversation_log(self, conversation_id: str) -> None:
        """Delete the debug log directory for a conversation."""
        conversation_dir = self.debug_dir / conversation_id
        if conversation_dir.exists():
            shutil.rmtree(conversation_dir)
            logger.info(f"Cleared debug logs for conversation {conversation_id}")
