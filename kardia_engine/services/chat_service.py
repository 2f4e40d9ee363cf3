"""
Chat Reply Service

Single entry point for generating a reply to a user message:

    persist user turn -> memo lookup -> (miss) assemble context -> build
    prompt -> call model -> normalize -> persist model turn -> return

Every failure after the user's turn is recorded becomes a fixed fallback
reply, which is persisted like any other model turn. Only ValidationError
reaches the caller. Cancellation propagates untouched and nothing further
is persisted.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from kardia_engine.cache.keys import reply_key
from kardia_engine.cache.memo import ReplyMemoizer
from kardia_engine.config.models import ContextConfig, PromptConfig
from kardia_engine.llm.base import BaseLLMClient, GenerationRequest, ValidationError
from kardia_engine.models.reply import CanonicalReply
from kardia_engine.services.context_assembly import (
    AssessmentSummary,
    ContextAssembler,
    ProfileSnapshot,
    StoredMessage,
)
from kardia_engine.services.fallback_policy import FallbackCategory, FallbackPolicy
from kardia_engine.services.prompt_assembly import build_prompt
from kardia_engine.services.reply_normalizer import normalize_reply
from kardia_engine.utils.debug_logger import DebugLogger

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200


class ReplyStore(Protocol):
    """Context reads plus the message append the pipeline performs."""

    def load_profile_snapshot(self, user_id: str) -> Optional[ProfileSnapshot]:
        ...

    def load_recent_messages(self, conversation_id: str, limit: int) -> List[StoredMessage]:
        ...

    def load_recent_assessments(self, user_id: str, limit: int) -> List[AssessmentSummary]:
        ...

    def append_message(self, conversation_id: str, role: str, content: str) -> StoredMessage:
        ...


@dataclass
class ReplyOutcome:
    """A reply plus how it was produced."""
    reply: CanonicalReply
    source: str  # "model", "cache" or "fallback"
    fallback_category: Optional[FallbackCategory] = None
    persisted: bool = True


class ChatReplyService:
    """Produces contextualized replies; never raises except ValidationError."""

    def __init__(
        self,
        store: ReplyStore,
        llm_client: BaseLLMClient,
        memoizer: ReplyMemoizer,
        context_config: Optional[ContextConfig] = None,
        prompt_config: Optional[PromptConfig] = None,
        policy_template: Optional[str] = None,
        fallback: Optional[FallbackPolicy] = None,
        debug_logger: Optional[DebugLogger] = None,
        model_name: str = "",
    ):
        self.store = store
        self.llm_client = llm_client
        self.memoizer = memoizer
        self.context_config = context_config or ContextConfig()
        self.prompt_config = prompt_config or PromptConfig()
        self.policy_template = policy_template
        self.fallback = fallback or FallbackPolicy()
        self.debug_logger = debug_logger or DebugLogger(enabled=False)
        self.model_name = model_name
        self.assembler = ContextAssembler(
            store,
            max_messages=self.context_config.max_history_messages,
            max_assessments=self.context_config.max_assessments,
            max_message_chars=self.context_config.max_history_message_chars,
        )

    async def get_reply(self, conversation_id: str, user_id: str, message_text: str) -> CanonicalReply:
        """
        Reply to ``message_text`` in the given conversation.

        Raises:
            ValidationError: empty or oversized message (nothing persisted)
        """
        outcome = await self.get_reply_outcome(conversation_id, user_id, message_text)
        return outcome.reply

    async def get_reply_outcome(self, conversation_id: str, user_id: str, message_text: str) -> ReplyOutcome:
        """Same as ``get_reply`` but reports where the reply came from."""
        self.validate_message(message_text)
        preview = message_text[:PREVIEW_CHARS]

        try:
            user_turn = self.store.append_message(conversation_id, "user", message_text)
        except Exception as e:
            # Without a durable user turn there is nothing to answer
            logger.error(
                f"[FALLBACK] Could not record user message in conversation {conversation_id}: {e} "
                f"(preview={preview!r})",
                exc_info=True,
            )
            language = self._profile_language(user_id)
            category, reply = self.fallback.handle(e, language)
            return ReplyOutcome(reply=reply, source="fallback", fallback_category=category, persisted=False)

        state = {"language": None}

        async def compute() -> CanonicalReply:
            context = self.assembler.assemble(user_id, conversation_id, exclude_message_id=user_turn.id)
            state["language"] = context.language
            components = build_prompt(
                self.policy_template,
                context.language or self.prompt_config.default_language,
                context,
                message_text,
                max_payload_chars=self.prompt_config.max_payload_chars,
            )
            logger.info(
                f"Generating reply for conversation {conversation_id}: "
                f"history={components.history_turns_kept} (dropped {components.history_turns_dropped}), "
                f"assessments={len(context.assessments)}, chars={components.total_chars}"
            )
            return await self._generate(conversation_id, components.request)

        try:
            reply, hit = await self.memoizer.remember(reply_key(conversation_id, message_text), compute)
            outcome = ReplyOutcome(reply=reply, source="cache" if hit else "model")
        except asyncio.CancelledError:
            logger.info(f"Reply for conversation {conversation_id} cancelled; nothing persisted")
            raise
        except Exception as e:
            logger.error(
                f"[FALLBACK] Reply failed for conversation {conversation_id} "
                f"(user={user_id}, preview={preview!r}): {type(e).__name__}: {e}",
                exc_info=True,
            )
            language = state["language"] or self._profile_language(user_id)
            category, reply = self.fallback.handle(e, language)
            outcome = ReplyOutcome(reply=reply, source="fallback", fallback_category=category)

        try:
            self.store.append_message(conversation_id, "model", outcome.reply.to_json())
        except Exception as e:
            logger.error(
                f"Could not record model reply in conversation {conversation_id}: {e}",
                exc_info=True,
            )
            outcome.persisted = False

        return outcome

    def validate_message(self, message_text: str) -> None:
        if message_text is None or not message_text.strip():
            raise ValidationError("Message must not be empty")
        if len(message_text) > self.prompt_config.max_message_chars:
            raise ValidationError(
                f"Message is {len(message_text)} characters; the limit is {self.prompt_config.max_message_chars}"
            )

    async def _generate(self, conversation_id: str, request: GenerationRequest) -> CanonicalReply:
        raw: Optional[str] = None
        try:
            raw = await self.llm_client.invoke(request)
            reply = normalize_reply(raw).unwrap()
        except Exception as e:
            self.debug_logger.log_model_interaction(
                conversation_id=conversation_id,
                model=self.model_name,
                request=request,
                response=raw,
                settings=self.llm_client.generation_settings(),
                error=f"{type(e).__name__}: {e}",
            )
            raise

        self.debug_logger.log_model_interaction(
            conversation_id=conversation_id,
            model=self.model_name,
            request=request,
            response=raw,
            settings=self.llm_client.generation_settings(),
            metadata={"components": len(reply.components)},
        )
        return reply

    def _profile_language(self, user_id: str) -> Optional[str]:
        try:
            snapshot = self.store.load_profile_snapshot(user_id)
        except Exception:
            logger.warning(f"Could not read language preference for user {user_id}", exc_info=True)
            return None
        return snapshot.language if snapshot is not None else None
