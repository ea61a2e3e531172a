"""
Ventanilla Única - FastAPI Backend
==================================
Main API server for the financial copilot.

Architecture:
1. Provision calculations are done locally in Python - the LLM only writes guidance
2. Identity is delegated to the identity provider in front of the API
3. Every endpoint validates its input before touching storage or the calculator
"""

import logging
import re
import time
from datetime import date
from typing import Any, Dict, Optional
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Settings, get_settings
from tax_constants import DocumentCategory, HISTORY_FETCH_LIMIT
from models import DocumentRecord
from validation import (
    ValidationError,
    parse_period_query,
    parse_window_months,
    sanitize_monthly_input,
    sanitize_tax_profile,
)
from provision_calculator import HistoryAggregator, UnsupportedProfileError, compute_provision
from llm_prompts import (
    MISSING_INPUT_REASON,
    MISSING_PROFILE_REASON,
    build_conversation_context,
    build_provision_context,
    get_system_prompt,
)
from openai_client import AdvisorAIClient, AIErrorKind, AIResponse, get_ai_client
from rate_limit import RateLimiter, get_client_ip
from storage import ConversationStore, DocumentStore, MonthlyInputStore, StorageError, TaxProfileStore

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION SETUP
# =============================================================================

# In-memory storage (replace with database in production)
profiles_db = TaxProfileStore()
monthly_inputs_db = MonthlyInputStore()
conversations_db = ConversationStore()
documents_db = DocumentStore()

chat_rate_limiter = RateLimiter(
    limit=settings.chat_rate_limit,
    window_seconds=settings.chat_rate_window_seconds,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Ventanilla Única starting up (demo_mode=%s)...", settings.demo_mode)
    yield
    logger.info("Ventanilla Única shutting down...")


app = FastAPI(
    title="Ventanilla Única",
    description="Financial and tax copilot for independent workers in Colombia",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ERRORS
# =============================================================================

class ChatServiceError(Exception):
    """A chat request failed with a specific HTTP status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class NotAuthenticatedError(Exception):
    pass


class FeatureDisabledError(Exception):
    pass


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(ChatServiceError)
async def chat_exception_handler(request: Request, exc: ChatServiceError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(NotAuthenticatedError)
async def auth_exception_handler(request: Request, exc: NotAuthenticatedError):
    return JSONResponse(status_code=401, content={"error": str(exc) or "Not authenticated."})


@app.exception_handler(FeatureDisabledError)
async def disabled_exception_handler(request: Request, exc: FeatureDisabledError):
    return JSONResponse(status_code=404, content={"error": "Not available in DEMO_MODE."})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An error occurred"
        }
    )


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_today() -> date:
    return date.today()


def get_profile_store() -> TaxProfileStore:
    return profiles_db


def get_monthly_input_store() -> MonthlyInputStore:
    return monthly_inputs_db


def get_conversation_store() -> ConversationStore:
    return conversations_db


def get_document_store() -> DocumentStore:
    return documents_db


def get_chat_rate_limiter() -> RateLimiter:
    return chat_rate_limiter


def get_optional_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """User id set by the identity provider in front of the API."""
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


def get_current_user_id(user_id: Optional[str] = Depends(get_optional_user_id)) -> str:
    if not user_id:
        raise NotAuthenticatedError("Not authenticated.")
    return user_id


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class ChatResponse(BaseModel):
    conversation_id: str
    reply: str


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

async def read_json_object(request: Request) -> Dict[str, Any]:
    """Parse the request body as a JSON object or raise 400."""
    try:
        body = await request.json()
    except ValueError:
        # Covers JSONDecodeError, UnicodeDecodeError and oversized integer literals
        raise ValidationError("body", "Invalid JSON.")
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("body", "Expected a JSON object.")
    return body


def not_ready(reason: str, message: str) -> JSONResponse:
    """Estimate cannot be produced yet; tell the user what is missing."""
    return JSONResponse(status_code=400, content={"error": message, "reason": reason})


def sanitize_file_name(name: str) -> str:
    name = re.sub(r"[^a-z0-9.-]", "-", name.lower())
    return re.sub(r"-+", "-", name)


def is_pdf(upload: UploadFile) -> bool:
    by_type = upload.content_type == "application/pdf"
    by_name = (upload.filename or "").lower().endswith(".pdf")
    return by_type or by_name


def log_chat_request(ip: str, user_id: Optional[str], message_length: int, response: AIResponse):
    logger.info(
        f"[api/chat] ip={ip} user_id={user_id or 'demo'} message_length={message_length} "
        f"model={response.model} openai_duration_ms={response.duration_ms} tokens={response.tokens_used}"
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@app.get("/")
async def root():
    """API health check."""
    return {
        "service": "Ventanilla Única",
        "version": "1.0.0",
        "status": "healthy",
    }


@app.get("/api/health")
async def health_check(
    settings: Settings = Depends(get_settings),
    ai_client: AdvisorAIClient = Depends(get_ai_client),
):
    """Detailed health check."""
    return {
        "status": "healthy",
        "demo_mode": settings.demo_mode,
        "components": {
            "provision_calculator": "ready",
            "llm_integration": "connected" if ai_client.is_connected else "mock_mode",
        }
    }


# --- TAX PROFILE ---

@app.get("/api/profile/tax-co")
async def get_tax_profile(
    user_id: str = Depends(get_current_user_id),
    profiles: TaxProfileStore = Depends(get_profile_store),
):
    """Get the user's tax profile (null if never saved)."""
    profile = profiles.get(user_id)
    return {"profile": profile.model_dump(mode="json") if profile else None}


@app.post("/api/profile/tax-co")
async def upsert_tax_profile(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    profiles: TaxProfileStore = Depends(get_profile_store),
):
    """Create or replace the user's tax profile."""
    profile = sanitize_tax_profile(await read_json_object(request))
    stored = profiles.upsert(user_id, profile)
    return {"profile": stored.model_dump(mode="json")}


# --- MONTHLY INPUT ---

@app.get("/api/taxes/monthly-input")
async def get_monthly_input(
    year: Optional[str] = Query(default=None),
    month: Optional[str] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    monthly_inputs: MonthlyInputStore = Depends(get_monthly_input_store),
):
    """Get the user's input for one month (null if not entered)."""
    year_value, month_value = parse_period_query(year, month)
    row = monthly_inputs.get(user_id, year_value, month_value)
    return {"input": row.model_dump(mode="json") if row else None}


@app.post("/api/taxes/monthly-input")
async def upsert_monthly_input(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    monthly_inputs: MonthlyInputStore = Depends(get_monthly_input_store),
):
    """Save a month's figures; resubmitting the same month replaces it."""
    monthly_input = sanitize_monthly_input(await read_json_object(request))
    row = monthly_inputs.upsert(user_id, monthly_input)
    return {"input": row.model_dump(mode="json")}


# --- PROVISION ESTIMATE ---

@app.get("/api/taxes/estimate")
async def get_estimate(
    user_id: str = Depends(get_current_user_id),
    today: date = Depends(get_today),
    profiles: TaxProfileStore = Depends(get_profile_store),
    monthly_inputs: MonthlyInputStore = Depends(get_monthly_input_store),
):
    """
    Calculate the provision for the current calendar month.

    This runs the ACTUAL calculation locally in Python.
    The LLM is NOT used for provision math.
    """
    year, month = today.year, today.month

    profile = profiles.get(user_id)
    if profile is None:
        return not_ready("missing_profile", MISSING_PROFILE_REASON)

    monthly_input = monthly_inputs.get(user_id, year, month)
    if monthly_input is None:
        return not_ready("missing_monthly_input", MISSING_INPUT_REASON)

    try:
        breakdown = compute_provision(profile, monthly_input)
    except UnsupportedProfileError as e:
        return not_ready(e.reason, e.message)

    return {
        "period": {"year": year, "month": month},
        "profile": profile.model_dump(
            mode="json",
            include={"persona_type", "regimen", "vat_responsible", "provision_style", "municipality"},
        ),
        "inputs": monthly_input.model_dump(
            mode="json",
            include={"income_cop", "deductible_expenses_cop", "withholdings_cop", "vat_collected_cop"},
        ),
        "breakdown": breakdown.model_dump(mode="json"),
    }


# --- PROVISION HISTORY ---

@app.get("/api/taxes/history")
async def get_history(
    months: Optional[str] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    today: date = Depends(get_today),
    profiles: TaxProfileStore = Depends(get_profile_store),
    monthly_inputs: MonthlyInputStore = Depends(get_monthly_input_store),
):
    """Provision trend over the last `months` months (default 6, max 24)."""
    window = parse_window_months(months)

    profile = profiles.get(user_id)
    if profile is None:
        return {"items": []}

    rows = monthly_inputs.list_recent(user_id, limit=HISTORY_FETCH_LIMIT)
    items = HistoryAggregator().build_series(profile, rows, window, today)

    return {"items": [item.model_dump(mode="json") for item in items]}


# --- CHAT ---

@app.post("/api/chat", response_model=ChatResponse)
async def chat(
    request: Request,
    user_id: Optional[str] = Depends(get_optional_user_id),
    settings: Settings = Depends(get_settings),
    today: date = Depends(get_today),
    limiter: RateLimiter = Depends(get_chat_rate_limiter),
    ai_client: AdvisorAIClient = Depends(get_ai_client),
    conversations: ConversationStore = Depends(get_conversation_store),
    profiles: TaxProfileStore = Depends(get_profile_store),
    monthly_inputs: MonthlyInputStore = Depends(get_monthly_input_store),
):
    """
    Answer a message from the assistant.

    The assistant receives:
    1. The last messages of the conversation
    2. The user's current-month provision (calculated in Python, not by the LLM)
    """
    client_ip = get_client_ip(request.headers)
    rate = limiter.check(client_ip)
    if not rate.allowed:
        return JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded"},
            headers={"Retry-After": str(rate.reset_in_seconds)},
        )

    body = await read_json_object(request)
    raw_message = body.get("message")
    message = raw_message.strip() if isinstance(raw_message, str) else ""
    if not message:
        raise ValidationError("message", "The 'message' field is required.")
    if len(message) > settings.max_message_length:
        raise ValidationError("message", "Message too long")

    allow_anonymous = settings.demo_mode
    owner_id = None
    if not allow_anonymous:
        if not user_id:
            raise NotAuthenticatedError("You must sign in to use the chat.")
        owner_id = user_id

    conversation = None
    raw_conversation_id = body.get("conversation_id")
    conversation_id = raw_conversation_id.strip() if isinstance(raw_conversation_id, str) else ""
    if conversation_id:
        conversation = conversations.find(conversation_id, owner_id)
    if conversation is None:
        conversation = conversations.create(owner_id)

    history = conversations.recent_messages(conversation.id, settings.history_messages)
    conversations.add_message(conversation.id, "user", message, owner_id)

    user_prompt = build_conversation_context(history, message)
    if owner_id:
        user_prompt += "\n\n" + build_provision_context(
            profiles.get(owner_id),
            monthly_inputs.get(owner_id, today.year, today.month),
            today.year,
            today.month,
        )

    # The SDK call is blocking
    response = await run_in_threadpool(ai_client.generate_reply, get_system_prompt(), user_prompt)
    log_chat_request(client_ip, owner_id, len(message), response)

    if not response.success:
        if response.error_kind == AIErrorKind.TIMEOUT:
            raise ChatServiceError(504, "OpenAI timeout")
        if response.error_kind == AIErrorKind.AUTH:
            raise ChatServiceError(502, "OpenAI auth error")
        if response.error_kind == AIErrorKind.MODEL_NOT_FOUND:
            raise ChatServiceError(502, f"Model not found: {response.model}")
        raise ChatServiceError(502, "Error generating a reply with OpenAI.")

    reply = response.content.strip()
    if not reply:
        raise ChatServiceError(502, "OpenAI returned no reply text.")

    conversations.add_message(conversation.id, "assistant", reply, owner_id)

    return ChatResponse(conversation_id=conversation.id, reply=reply)


# --- DOCUMENTS ---

@app.get("/api/documents")
async def list_documents(
    settings: Settings = Depends(get_settings),
    user_id: Optional[str] = Depends(get_optional_user_id),
    documents: DocumentStore = Depends(get_document_store),
):
    """List the user's documents, newest first."""
    if settings.demo_mode:
        raise FeatureDisabledError()
    if not user_id:
        raise NotAuthenticatedError("Not authenticated.")

    return {"documents": [d.model_dump(mode="json") for d in documents.list_for_user(user_id)]}


@app.post("/api/documents")
async def upload_document(
    title: str = Form(default=""),
    category: str = Form(default=""),
    file: Optional[UploadFile] = File(default=None),
    settings: Settings = Depends(get_settings),
    user_id: Optional[str] = Depends(get_optional_user_id),
    documents: DocumentStore = Depends(get_document_store),
):
    """
    Upload a PDF document.

    The file is stored first; if saving its metadata fails the stored
    file is removed again.
    """
    if settings.demo_mode:
        raise FeatureDisabledError()
    if not user_id:
        raise NotAuthenticatedError("Not authenticated.")

    title = title.strip()
    if not title:
        raise ValidationError("title", "Title is required.")

    try:
        document_category = DocumentCategory(category.strip())
    except ValueError:
        raise ValidationError("category", "Invalid category.")

    if file is None:
        raise ValidationError("file", "A PDF file must be attached.")
    if not is_pdf(file):
        raise ValidationError("file", "Only PDF files are allowed.")

    safe_name = sanitize_file_name(file.filename or "document.pdf")
    storage_path = f"{user_id}/{int(time.time() * 1000)}-{safe_name}"
    content = await file.read()

    try:
        documents.upload(storage_path, content)
    except StorageError as e:
        logger.error(f"Document upload failed for {storage_path}: {e}")
        return JSONResponse(status_code=500, content={"error": "Could not upload the file to storage."})

    try:
        record = documents.insert(DocumentRecord(
            user_id=user_id,
            title=title,
            category=document_category,
            storage_path=storage_path,
        ))
    except StorageError as e:
        logger.error(f"Document metadata insert failed for {storage_path}: {e}")
        documents.remove(storage_path)
        return JSONResponse(status_code=500, content={"error": "Could not save document metadata."})

    return {"document": record.model_dump(mode="json")}


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
