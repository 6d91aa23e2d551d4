"""Main entry point for Parley Chat API."""
import logging
from typing import Dict, Optional, Tuple

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import CORS_ORIGINS, DEFAULT_PAGE_SIZE, ENVIRONMENT, LOG_LEVEL, PORT, VERSION
from logger import setup_logging
from models.api import ChatRequest, GenerateRequest
from models.conversation import format_timestamp, utcnow
from models.errors import ChatServiceError, ErrorKind
from services.conversation_service import ConversationService
from services.generation_service import GenerationService
from services.model_client import ModelClient
from storage import create_conversation_store

setup_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)

# Every ErrorKind maps to exactly one HTTP status and error label
ERROR_RESPONSES: Dict[ErrorKind, Tuple[int, str]] = {
    ErrorKind.INVALID_MODEL: (400, "Invalid request"),
    ErrorKind.INVALID_INPUT: (400, "Invalid request"),
    ErrorKind.AUTH_ERROR: (401, "Authentication failed"),
    ErrorKind.RATE_LIMIT_EXCEEDED: (429, "Rate limit exceeded"),
    ErrorKind.QUOTA_EXCEEDED: (429, "API quota exceeded"),
    ErrorKind.GENERATION_FAILED: (500, "Content generation failed"),
    ErrorKind.NOT_FOUND: (404, "Conversation not found"),
    ErrorKind.INTERNAL_ERROR: (500, "Internal server error"),
}

_unmapped = set(ErrorKind) - set(ERROR_RESPONSES)
if _unmapped:
    raise RuntimeError(f"No HTTP mapping for error kinds: {sorted(kind.value for kind in _unmapped)}")

# Initialize FastAPI app
app = FastAPI(
    title="Parley Chat API",
    description="Chat backend with retrying generation and conversation persistence",
    version=VERSION
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.on_event("startup")
async def startup_event():
    """Build the store and services once and hand them to the request handlers."""
    logger.info("Initializing Parley Chat API services...")

    try:
        store = create_conversation_store()
        logger.info(f"Initialized conversation store ({store.backend_name})")

        generation_service = GenerationService(ModelClient())
        logger.info("Initialized GenerationService")

        app.state.store = store
        app.state.generation_service = generation_service
        app.state.conversation_service = ConversationService(store, generation_service)
        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise ChatServiceError(ErrorKind.INTERNAL_ERROR, "Service not initialized")
    return service


def get_generation_service(request: Request) -> GenerationService:
    return _service(request, "generation_service")


def get_conversation_service(request: Request) -> ConversationService:
    return _service(request, "conversation_service")


def error_response(
    kind: ErrorKind,
    message: str,
    retry_after: Optional[int] = None
) -> JSONResponse:
    status_code, label = ERROR_RESPONSES[kind]
    body = {"success": False, "error": label, "message": message}
    if kind == ErrorKind.RATE_LIMIT_EXCEEDED:
        body["retryAfter"] = retry_after
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(ChatServiceError)
async def chat_service_error_handler(request: Request, exc: ChatServiceError) -> JSONResponse:
    status_code, _ = ERROR_RESPONSES[exc.kind]
    log = logger.error if status_code >= 500 else logger.warning
    log(
        f"{request.method} {request.url.path} failed: {exc.kind.value}: {exc.message}",
        extra={"error_code": exc.kind.value}
    )
    return error_response(exc.kind, exc.message, exc.retry_after)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    )
    return error_response(ErrorKind.INVALID_INPUT, problems or "Invalid request")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "error": "Route not found",
                "message": f"Cannot {request.method} {request.url.path}"
            }
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail), "message": str(exc.detail)}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    message = str(exc) if ENVIRONMENT == "development" else "Something went wrong"
    return error_response(ErrorKind.INTERNAL_ERROR, message)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Parley Chat API"}


@app.get("/health")
async def health(request: Request):
    """Detailed health check."""
    store = getattr(request.app.state, "store", None)
    return {
        "status": "healthy",
        "service": "parley-chat-api",
        "version": VERSION,
        "environment": ENVIRONMENT,
        "storage": store.backend_name if store is not None else None,
        "timestamp": format_timestamp(utcnow()),
    }


@app.post("/generate")
def generate_endpoint(
    request: GenerateRequest,
    generation_service: GenerationService = Depends(get_generation_service)
):
    """
    Generate text for a single prompt without touching any conversation.

    Retries happen inside the generation service; the response reports which
    attempt succeeded.
    """
    result = generation_service.generate(request.contents, model=request.model)
    return {
        "success": True,
        "text": result.text,
        "model": result.model,
        "attempt": result.attempt,
        "timestamp": format_timestamp(result.timestamp),
    }


@app.post("/chat")
def chat_endpoint(
    request: ChatRequest,
    conversation_service: ConversationService = Depends(get_conversation_service)
):
    """
    Send a message within a conversation and persist both sides.

    A new conversation is created when no conversationId is given.
    """
    reply = conversation_service.send_message(
        request.message,
        conversation_id=request.conversation_id,
        session_id=request.session_id,
        model=request.model
    )
    return {
        "success": True,
        "conversationId": reply.conversation_id,
        "sessionId": reply.session_id,
        "message": reply.message.to_dict(),
        "conversationTitle": reply.conversation_title,
    }


@app.get("/conversations")
def list_conversations_endpoint(
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    page: int = Query(default=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE),
    conversation_service: ConversationService = Depends(get_conversation_service)
):
    """List conversations, newest activity first."""
    result = conversation_service.list_conversations(session_id=session_id, page=page, limit=limit)
    return {
        "success": True,
        "conversations": [conversation.to_dict() for conversation in result.conversations],
        "pagination": result.pagination,
    }


@app.get("/conversations/search")
def search_conversations_endpoint(
    q: Optional[str] = Query(default=None),
    page: int = Query(default=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE),
    conversation_service: ConversationService = Depends(get_conversation_service)
):
    """Search titles, message contents and tags (case-insensitive)."""
    result = conversation_service.search_conversations(q, page=page, limit=limit)
    return {
        "success": True,
        "conversations": [conversation.to_dict() for conversation in result.conversations],
        "query": q.strip(),
        "pagination": result.pagination,
    }


@app.get("/conversations/{conversation_id}")
def get_conversation_endpoint(
    conversation_id: str,
    conversation_service: ConversationService = Depends(get_conversation_service)
):
    conversation = conversation_service.get_conversation(conversation_id)
    return {"success": True, "conversation": conversation.to_dict()}


@app.delete("/conversations/{conversation_id}")
def delete_conversation_endpoint(
    conversation_id: str,
    conversation_service: ConversationService = Depends(get_conversation_service)
):
    conversation_service.delete_conversation(conversation_id)
    return {"success": True, "message": "Conversation deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Parley Chat API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
