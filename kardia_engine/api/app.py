"""FastAPI application and routes."""

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, Iterator, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kardia_engine import __version__
from kardia_engine.cache import ReplyMemoizer, create_cache_store
from kardia_engine.cache.store import CacheStore
from kardia_engine.config import ConfigLoader, SystemConfig
from kardia_engine.db import create_db_engine, create_session_factory, init_db, session_scope
from kardia_engine.llm import BaseLLMClient, PersistenceFailure, ValidationError, create_llm_client
from kardia_engine.models import Conversation
from kardia_engine.repositories import (
    ConversationRepository,
    ProfileRepository,
    RiskAssessmentRepository,
    SqlContextStore,
)
from kardia_engine.services.chat_service import ChatReplyService
from kardia_engine.services.dashboard import build_dashboard
from kardia_engine.utils.debug_logger import DebugLogger

logger = logging.getLogger(__name__)


# Request/Response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    llm_available: bool
    version: str


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=100)
    date_of_birth: Optional[date] = None
    sex: Optional[str] = Field(default=None, max_length=20)
    language: Optional[str] = Field(default=None, max_length=50)


class AssessmentCreate(BaseModel):
    """Numeric result of a risk calculation performed by the caller."""
    final_risk_percentage: float = Field(ge=0.0, le=100.0)
    model_used: Optional[str] = None
    inputs: Optional[Dict[str, Any]] = None
    generated_values: Optional[Dict[str, Any]] = None


class ReportAttach(BaseModel):
    report: Dict[str, Any]


class MessageCreate(BaseModel):
    message: str


class TitleUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=200)


# Dependencies

def get_db(request: Request) -> Iterator[Session]:
    """Per-request database session."""
    yield from session_scope(request.app.state.session_factory)


def get_cache(request: Request) -> CacheStore:
    return request.app.state.cache_store


def get_config(request: Request) -> SystemConfig:
    return request.app.state.system_config


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity; authentication happens upstream."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


def get_conversations(
    db: Session = Depends(get_db),
    cache: CacheStore = Depends(get_cache),
    config: SystemConfig = Depends(get_config),
) -> ConversationRepository:
    return ConversationRepository(
        db,
        cache,
        list_ttl_seconds=config.cache.conversation_list_ttl_seconds,
        detail_ttl_seconds=config.cache.conversation_detail_ttl_seconds,
    )


def get_profiles(
    db: Session = Depends(get_db),
    cache: CacheStore = Depends(get_cache),
    config: SystemConfig = Depends(get_config),
) -> ProfileRepository:
    return ProfileRepository(db, cache, ttl_seconds=config.cache.profile_ttl_seconds)


def get_assessments(
    db: Session = Depends(get_db),
    cache: CacheStore = Depends(get_cache),
    config: SystemConfig = Depends(get_config),
) -> RiskAssessmentRepository:
    return RiskAssessmentRepository(
        db,
        cache,
        digest_size=config.context.max_assessments,
        digest_ttl_seconds=config.cache.recent_assessments_ttl_seconds,
        dashboard_ttl_seconds=config.cache.dashboard_ttl_seconds,
    )


def get_chat_service(
    request: Request,
    db: Session = Depends(get_db),
    cache: CacheStore = Depends(get_cache),
    config: SystemConfig = Depends(get_config),
) -> ChatReplyService:
    state = request.app.state
    return ChatReplyService(
        store=SqlContextStore.from_session(db, cache, config.cache, digest_size=config.context.max_assessments),
        llm_client=state.llm_client,
        memoizer=state.memoizer,
        context_config=config.context,
        prompt_config=config.prompt,
        policy_template=state.policy_template,
        debug_logger=state.debug_logger,
        model_name=config.llm.model,
    )


def owned_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    conversations: ConversationRepository = Depends(get_conversations),
) -> Conversation:
    conversation = conversations.get(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")
    if conversation.user_id != user_id:
        raise HTTPException(status_code=403, detail="Unauthorized action.")
    return conversation


router = APIRouter(prefix="/v1")


# Profile

@router.get("/profile")
async def get_profile(
    user_id: str = Depends(get_user_id),
    profiles: ProfileRepository = Depends(get_profiles),
):
    view = profiles.get_view(user_id)
    if view is None:
        raise HTTPException(status_code=404, detail="User profile not found.")
    return {"data": view}


@router.patch("/profile")
async def patch_profile(
    payload: ProfileUpdate,
    user_id: str = Depends(get_user_id),
    profiles: ProfileRepository = Depends(get_profiles),
):
    profiles.upsert(user_id, **payload.model_dump(exclude_unset=True))
    return {"message": "Profile saved successfully!", "data": profiles.get_view(user_id)}


# Risk assessments

@router.post("/risk-assessments", status_code=202)
async def create_assessment(
    payload: AssessmentCreate,
    user_id: str = Depends(get_user_id),
    profiles: ProfileRepository = Depends(get_profiles),
    assessments: RiskAssessmentRepository = Depends(get_assessments),
):
    if profiles.get(user_id) is None:
        raise HTTPException(status_code=404, detail="User profile not found.")
    assessment = assessments.create(
        user_id,
        payload.final_risk_percentage,
        model_used=payload.model_used,
        inputs=payload.inputs,
        generated_values=payload.generated_values,
    )
    return {
        "message": "Initial assessment complete.",
        "assessment_id": assessment.id,
        "final_risk_percentage": assessment.final_risk_percentage,
    }


@router.patch("/risk-assessments/{assessment_id}/report")
async def attach_report(
    assessment_id: str,
    payload: ReportAttach,
    user_id: str = Depends(get_user_id),
    assessments: RiskAssessmentRepository = Depends(get_assessments),
):
    assessment = assessments.get(assessment_id)
    if assessment is None:
        raise HTTPException(status_code=404, detail=f"Assessment {assessment_id} not found")
    if assessment.user_id != user_id:
        raise HTTPException(status_code=403, detail="Unauthorized action.")
    assessments.attach_report(assessment, payload.report)
    return {"message": "Personalized report saved.", "data": assessment.result_details}


@router.get("/dashboard")
async def get_dashboard(
    user_id: str = Depends(get_user_id),
    assessments: RiskAssessmentRepository = Depends(get_assessments),
):
    dashboard = build_dashboard(assessments.list_for_dashboard(user_id))
    if dashboard is None:
        return {"data": None, "message": "No assessment history found."}
    return {"data": dashboard}


# Chat

@router.get("/chat/conversations")
async def list_conversations(
    user_id: str = Depends(get_user_id),
    conversations: ConversationRepository = Depends(get_conversations),
):
    return {"data": conversations.list_for_user(user_id)}


@router.post("/chat/conversations", status_code=201)
async def create_conversation(
    payload: MessageCreate,
    user_id: str = Depends(get_user_id),
    conversations: ConversationRepository = Depends(get_conversations),
    chat: ChatReplyService = Depends(get_chat_service),
):
    chat.validate_message(payload.message)
    conversation = conversations.create(user_id, payload.message)
    reply = await chat.get_reply(conversation.id, user_id, payload.message)
    return {
        "conversation": {"id": conversation.id, "title": conversation.title},
        "reply": reply.to_dict(),
    }


@router.get("/chat/conversations/{conversation_id}")
async def show_conversation(
    conversation: Conversation = Depends(owned_conversation),
    conversations: ConversationRepository = Depends(get_conversations),
):
    detail = conversations.get_detail(conversation.id)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation.id} not found")
    return {"data": detail}


@router.patch("/chat/conversations/{conversation_id}")
async def rename_conversation(
    payload: TitleUpdate,
    conversation: Conversation = Depends(owned_conversation),
    conversations: ConversationRepository = Depends(get_conversations),
):
    conversations.update_title(conversation, payload.title)
    return {"id": conversation.id, "title": conversation.title, "updated_at": conversation.updated_at.isoformat()}


@router.delete("/chat/conversations/{conversation_id}", status_code=204)
async def delete_conversation(
    request: Request,
    conversation: Conversation = Depends(owned_conversation),
    conversations: ConversationRepository = Depends(get_conversations),
):
    conversation_id = conversation.id
    conversations.delete(conversation)
    request.app.state.debug_logger.clear_conversation_log(conversation_id)
    return Response(status_code=204)


@router.post("/chat/conversations/{conversation_id}/messages")
async def send_message(
    payload: MessageCreate,
    conversation: Conversation = Depends(owned_conversation),
    chat: ChatReplyService = Depends(get_chat_service),
):
    reply = await chat.get_reply(conversation.id, conversation.user_id, payload.message)
    return {"reply": reply.to_dict()}


def create_app(
    system_config: Optional[SystemConfig] = None,
    llm_client: Optional[BaseLLMClient] = None,
    cache_store: Optional[CacheStore] = None,
    debug_logger: Optional[DebugLogger] = None,
) -> FastAPI:
    """
    Build the application.

    Anything not supplied is created from ``config/system.yaml`` at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        logger.info("Starting Kardia Engine...")
        state = app.state
        try:
            loader = ConfigLoader()
            config = system_config or loader.load_system_config()
            state.system_config = config

            engine = create_db_engine(config.database_url)
            init_db(engine)
            state.engine = engine
            state.session_factory = create_session_factory(engine)
            logger.info("✓ Database initialized")

            state.cache_store = cache_store or create_cache_store(config.cache)
            state.memoizer = ReplyMemoizer(
                state.cache_store,
                ttl_seconds=config.cache.reply_ttl_seconds,
                single_flight=config.cache.single_flight,
            )
            logger.info(f"✓ Cache ready (backend={config.cache.backend}, single_flight={config.cache.single_flight})")

            state.llm_client = llm_client or create_llm_client(config.llm)
            state.policy_template = loader.load_policy_template(config)
            state.debug_logger = debug_logger or DebugLogger(enabled=config.debug)
            logger.info(f"✓ Model client ready: {config.llm.provider}/{config.llm.model}")
        except Exception as e:
            logger.error(f"Failed to start Kardia Engine: {e}")
            raise

        yield

        logger.info("Shutting down Kardia Engine...")
        await state.llm_client.close()
        state.engine.dispose()

    app = FastAPI(
        title="Kardia Engine",
        description="Contextual health-coaching replies over a remote generative model",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(PersistenceFailure)
    async def persistence_failure_handler(request: Request, exc: PersistenceFailure):
        logger.error(f"Persistence failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Storage is temporarily unavailable."})

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Check system health."""
        return HealthResponse(
            status="ok",
            llm_available=await request.app.state.llm_client.health_check(),
            version=__version__,
        )

    app.include_router(router)
    return app


app = create_app()
