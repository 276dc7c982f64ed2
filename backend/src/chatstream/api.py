"""FastAPI application with DBOS durable workflows."""

import logging

from dbos import DBOS
from fastapi import FastAPI, File, HTTPException, Header, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from chatmodels import Conversation
from chatstream.config import settings
from chatstream.db import Database, db
from chatstream.errors import (
    AccessDenied,
    ChatStreamError,
    ConversationNotFound,
    InvalidTurnRequest,
    MessageNotFound,
    MissingCredentialError,
    TurnInProgressError,
)
from chatstream.models import (
    CitationTarget,
    ConversationListResponse,
    ConversationResponse,
    CreateConversationRequest,
    ModelSettingsResponse,
    StagedFileResponse,
    TurnResponse,
)
from chatstream.services.blob_store import LocalBlobStore
from chatstream.services.chat_handler import ChatHandler, TurnSubmission, get_owned_conversation
from chatstream.services.file_index import FileCitationIndex
from chatstream.services.preview import FilePreview, get_file_preview
from chatstream.services.provider import ProviderCredentials
from chatstream.services.uploads import is_supported_file
from chatstream.sse import (
    conversation_event_stream,
    create_sse_response,
    notify_conversation_updated,
    user_event_stream,
)

# Import DBOS config to initialize DBOS before defining workflows
from chatstream.workflows.dbos_config import dbos_config  # noqa: F401

# Import workflows so they are registered with DBOS
from chatstream.workflows.turns import DBOSTurnScheduler

logger = logging.getLogger(__name__)

app = FastAPI(
    title="ChatStream API",
    description="Streaming chat assistant API with durable turns",
    version="0.1.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

blobs = LocalBlobStore()
chat_handler = ChatHandler(db, DBOSTurnScheduler(), blobs=blobs)
file_index = FileCitationIndex(db)


@app.on_event("startup")
async def startup_event():
    """Initialize database and DBOS on startup."""
    if isinstance(db, Database):
        await db.connect()
        await db.ensure_tables_exist()

    # Launch DBOS
    DBOS.launch()


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up on shutdown."""
    if isinstance(db, Database):
        await db.disconnect()


def resolve_user_id(user_id: str | None) -> str:
    """Fall back to a fixed identity for local development."""
    return user_id or "local-dev-user"


def raise_http_error(e: ChatStreamError):
    """Map engine errors onto HTTP status codes."""
    if isinstance(e, (ConversationNotFound, MessageNotFound)):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, AccessDenied):
        raise HTTPException(status_code=403, detail=str(e))
    if isinstance(e, TurnInProgressError):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (InvalidTurnRequest, MissingCredentialError)):
        raise HTTPException(status_code=400, detail=str(e))
    raise HTTPException(status_code=500, detail=str(e))


# ============= Health & Info =============


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "ChatStream API", "version": "0.1.0"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "store": settings.store_backend}


# ============= Events =============


@app.get("/events")
async def events(
    request: Request,
    user_id: str = Header(alias="X-User-ID", default=None),
):
    """Stream changes to the user's conversation list as server-sent events."""
    user_id = resolve_user_id(user_id)
    return create_sse_response(user_event_stream(user_id, request))


# ============= Conversation Endpoints =============


@app.post("/conversations", response_model=Conversation)
async def create_conversation(
    request: CreateConversationRequest,
    user_id: str = Header(alias="X-User-ID", default=None),
):
    """Start a new conversation."""
    user_id = resolve_user_id(user_id)
    conversation = await db.create_conversation(user_id, title=request.title)
    await notify_conversation_updated(user_id, conversation.id)
    return conversation


@app.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    user_id: str = Header(alias="X-User-ID", default=None),
):
    """List user's conversations, most recently active first."""
    user_id = resolve_user_id(user_id)

    conversations = await db.list_conversations(user_id)
    return ConversationListResponse(
        conversations=conversations,
        total=len(conversations),
    )


@app.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    user_id: str = Header(alias="X-User-ID", default=None),
):
    """Get a conversation with its messages."""
    user_id = resolve_user_id(user_id)
    try:
        conversation = await get_owned_conversation(db, conversation_id, user_id)
    except ChatStreamError as e:
        raise_http_error(e)

    messages = await db.get_messages(conversation_id)
    return ConversationResponse(
        conversation=conversation,
        messages=messages,
    )


@app.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    user_id: str = Header(alias="X-User-ID", default=None),
):
    """Delete a conversation and everything in it."""
    user_id = resolve_user_id(user_id)
    try:
        await chat_handler.delete_conversation(user_id, conversation_id)
    except ChatStreamError as e:
        raise_http_error(e)
    await notify_conversation_updated(user_id, conversation_id, deleted=True)
    return {"status": "ok"}


@app.post("/conversations/{conversation_id}/turns", response_model=TurnResponse)
async def submit_turn(
    conversation_id: str,
    submission: TurnSubmission,
    user_id: str = Header(alias="X-User-ID", default=None),
    openai_api_key: str | None = Header(alias="X-OpenAI-Key", default=None),
    openrouter_api_key: str | None = Header(alias="X-OpenRouter-Key", default=None),
):
    """Submit a user turn. The reply streams into the conversation asynchronously."""
    user_id = resolve_user_id(user_id)
    credentials = ProviderCredentials(
        openai_api_key=openai_api_key,
        openrouter_api_key=openrouter_api_key,
    )
    try:
        result = await chat_handler.submit_turn(user_id, conversation_id, submission, credentials)
    except ChatStreamError as e:
        raise_http_error(e)

    return TurnResponse(
        conversation_id=conversation_id,
        message=result.message,
        file_errors=result.file_errors,
    )


@app.get("/conversations/{conversation_id}/settings", response_model=ModelSettingsResponse)
async def get_model_settings(
    conversation_id: str,
    user_id: str = Header(alias="X-User-ID", default=None),
):
    """Get the model, reasoning effort and web search flag of the latest user turn."""
    user_id = resolve_user_id(user_id)
    try:
        model_settings = await chat_handler.get_model_settings(user_id, conversation_id)
    except ChatStreamError as e:
        raise_http_error(e)
    return ModelSettingsResponse(**model_settings)


@app.get(
    "/conversations/{conversation_id}/citations/{file_id}",
    response_model=CitationTarget | None,
)
async def resolve_citation(
    conversation_id: str,
    file_id: str,
    user_id: str = Header(alias="X-User-ID", default=None),
):
    """Resolve a file citation to the message that introduced the file.

    Returns null when the file is unknown or belongs to another conversation.
    """
    user_id = resolve_user_id(user_id)
    try:
        target = await file_index.resolve_for_conversation(conversation_id, file_id, user_id)
    except ChatStreamError as e:
        raise_http_error(e)
    return CitationTarget(**target) if target else None


@app.get("/conversations/{conversation_id}/events")
async def conversation_events(
    conversation_id: str,
    request: Request,
    user_id: str = Header(alias="X-User-ID", default=None),
):
    """Stream message updates for a conversation as server-sent events."""
    user_id = resolve_user_id(user_id)
    try:
        await get_owned_conversation(db, conversation_id, user_id)
    except ChatStreamError as e:
        raise_http_error(e)
    return create_sse_response(conversation_event_stream(conversation_id, request))


# ============= File Endpoints =============


@app.post("/files", response_model=StagedFileResponse)
async def stage_file(
    file: UploadFile = File(...),
    user_id: str = Header(alias="X-User-ID", default=None),
):
    """Stage an upload so it can be attached to a turn."""
    user_id = resolve_user_id(user_id)
    file_name = file.filename or "upload"
    if not is_supported_file(file_name):
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {file_name}")

    data = await file.read()
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=400,
            detail=f"File {file_name} is too large (max: {settings.max_file_size} bytes)",
        )

    blob_ref = await blobs.put(file_name, data)
    logger.info(f"User {user_id} staged {file_name} as {blob_ref}")
    return StagedFileResponse(file_name=file_name, blob_ref=blob_ref, size=len(data))


@app.get("/messages/{message_id}/files/{file_name}", response_model=FilePreview)
async def preview_file(
    message_id: str,
    file_name: str,
    user_id: str = Header(alias="X-User-ID", default=None),
):
    """Get an attachment's metadata and, for text files, its content."""
    user_id = resolve_user_id(user_id)
    try:
        return await get_file_preview(db, blobs, message_id, file_name, user_id)
    except ChatStreamError as e:
        raise_http_error(e)
