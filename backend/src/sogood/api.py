"""FastAPI application for the SoGood RAG chat backend."""

import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sogood.config import Settings, get_settings
from sogood.db import RagStore
from sogood.errors import ExportError, SoGoodError
from sogood.models import (
    ChatRequest,
    ChatResponse,
    ContextItem,
    ContextListResponse,
    ConversationListResponse,
    ConversationResponse,
    ExportRequest,
    ExportResponse,
)
from sogood.services.anthropic_client import AnthropicClient
from sogood.services.chat_handler import ChatHandler
from sogood.services.conversations import ConversationService
from sogood.services.google_doc import GoogleDocExporter
from sogood.services.resolver import ConversationResolver
from sogood_models import Conversation

logger = logging.getLogger(__name__)

settings = get_settings()
store = RagStore(settings)

app = FastAPI(
    title="SoGood RAG API",
    description="Company-scoped RAG chat with content pack coverage repair",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Open the store HTTP client."""
    await store.connect()


@app.on_event("shutdown")
async def shutdown_event():
    """Close the store HTTP client."""
    await store.disconnect()


# ============= Dependencies =============


def get_app_settings() -> Settings:
    return settings


def get_store() -> RagStore:
    return store


def get_llm(app_settings: Settings = Depends(get_app_settings)) -> AnthropicClient:
    return AnthropicClient(app_settings)


def get_resolver(
    rag_store: RagStore = Depends(get_store),
    app_settings: Settings = Depends(get_app_settings),
) -> ConversationResolver:
    return ConversationResolver(rag_store, app_settings)


def get_conversation_service(rag_store: RagStore = Depends(get_store)) -> ConversationService:
    return ConversationService(rag_store)


def get_chat_handler(
    resolver: ConversationResolver = Depends(get_resolver),
    llm: AnthropicClient = Depends(get_llm),
    app_settings: Settings = Depends(get_app_settings),
) -> ChatHandler:
    return ChatHandler(resolver, llm, app_settings)


def get_exporter(app_settings: Settings = Depends(get_app_settings)) -> GoogleDocExporter:
    return GoogleDocExporter(app_settings)


# ============= Error Handling =============


@app.exception_handler(ExportError)
async def export_error_handler(request: Request, exc: ExportError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})


@app.exception_handler(SoGoodError)
async def sogood_error_handler(request: Request, exc: SoGoodError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid payload", "details": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


# ============= Health & Info =============


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "SoGood RAG API", "version": "0.1.0"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/store")
async def store_health(rag_store: RagStore = Depends(get_store)):
    """Proxy the Supabase health endpoint."""
    ok, status, body = await rag_store.health()
    return JSONResponse(
        status_code=200 if ok else 502,
        content={"ok": ok, "status": status, "body": body or None},
    )


# ============= Conversation Endpoints =============


@app.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(service: ConversationService = Depends(get_conversation_service)):
    """List conversations, one per company."""
    return ConversationListResponse(conversations=await service.list())


@app.post("/conversations", response_model=ConversationResponse)
async def upsert_conversation(
    conversation: Conversation,
    service: ConversationService = Depends(get_conversation_service),
):
    """Create or update a conversation."""
    return ConversationResponse(conversation=await service.upsert(conversation))


@app.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
):
    """Get a conversation with its normalized messages."""
    return ConversationResponse(conversation=await service.get(conversation_id))


@app.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    service: ConversationService = Depends(get_conversation_service),
):
    """Delete a conversation and its company's context rows."""
    await service.delete(conversation_id)
    return {"ok": True}


@app.get("/conversations/{conversation_id}/contexts", response_model=ContextListResponse)
async def list_contexts(
    conversation_id: str,
    debug: bool = False,
    resolver: ConversationResolver = Depends(get_resolver),
    app_settings: Settings = Depends(get_app_settings),
):
    """List the context rows linked to a conversation."""
    debug = debug or app_settings.debug_context_export
    rows, info = await resolver.load_contexts(conversation_id, debug=debug)
    return ContextListResponse(
        contexts=[ContextItem.from_record(r) for r in rows],
        debug=info,
    )


# ============= Chat Endpoints =============


@app.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    debug: bool = False,
    handler: ChatHandler = Depends(get_chat_handler),
):
    """Answer the latest user message of a conversation."""
    result = await handler.handle(request.conversation_id, request.messages, debug=debug)
    return ChatResponse(reply=result.reply, fallback=result.fallback, meta=result.meta)


# ============= Export Endpoints =============


@app.post("/export/google-doc", response_model=ExportResponse)
async def export_google_doc(
    request: ExportRequest,
    exporter: GoogleDocExporter = Depends(get_exporter),
):
    """Export a transcript to Google Docs."""
    return ExportResponse(url=await exporter.export(request.title, request.content))


# ============= Run =============


def run():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "sogood.api:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )


if __name__ == "__main__":
    run()
