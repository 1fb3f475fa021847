# SPDX-License-Identifier: Apache-2.0
"""
HTTP surface for the AAC workbench orchestration layer.

Exposes the workbench (navigation, panels, chat session) and the historical
interpretation suggestions over JSON. The assistant backend itself is remote;
this service only talks to it through AssistantBackendClient.

Run with: uvicorn aac_workbench.adapter:app --host 127.0.0.1 --port 8000

Configuration via environment variables:
    WORKBENCH_BACKEND_URL      - Assistant backend root (default: http://localhost:5000/api)
    WORKBENCH_BACKEND_TIMEOUT  - Backend request timeout in seconds (default: 120)
    WORKBENCH_TRANSITION_MS    - Panel transition delay (default: 300, 0 = immediate)
    WORKBENCH_TEXT_DIRECTION   - "ltr" or "rtl" (default: "ltr")
    WORKBENCH_PERSIST_SESSIONS - Remember chat session ids (default: "false")
    WORKBENCH_STATE_DIR        - Where remembered session ids live (default: in memory)
    WORKBENCH_BIND_HOST        - Host to bind to (default: "127.0.0.1")
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import AliasChoices, BaseModel, Field

from aac_workbench import __version__
from aac_workbench.backend_client import DEFAULT_TIMEOUT, AssistantBackendClient
from aac_workbench.chat_session import validate_message_content
from aac_workbench.errors import ValidationError
from aac_workbench.features import FEATURE_TABLE, ChatMode, FeatureId, TextDirection, parse_feature
from aac_workbench.models import ReplyType
from aac_workbench.patterns import suggestions_to_dicts
from aac_workbench.session_keys import FileSessionKeyStore, MemorySessionKeyStore, SessionKeyStore
from aac_workbench.workbench import Workbench

logger = logging.getLogger(__name__)

# ============================================================================
# Configuration from environment
# ============================================================================

WORKBENCH_BACKEND_URL = os.environ.get("WORKBENCH_BACKEND_URL", "http://localhost:5000/api")
WORKBENCH_BACKEND_TIMEOUT = float(os.environ.get("WORKBENCH_BACKEND_TIMEOUT", str(DEFAULT_TIMEOUT)))
WORKBENCH_TRANSITION_MS = int(os.environ.get("WORKBENCH_TRANSITION_MS", "300"))
WORKBENCH_TEXT_DIRECTION = os.environ.get("WORKBENCH_TEXT_DIRECTION", "ltr")
WORKBENCH_PERSIST_SESSIONS = os.environ.get("WORKBENCH_PERSIST_SESSIONS", "false").lower() in ("true", "1", "yes")
WORKBENCH_STATE_DIR = os.environ.get("WORKBENCH_STATE_DIR", "")

# Host binding: loopback by default; set 0.0.0.0 explicitly if needed
WORKBENCH_BIND_HOST = os.environ.get("WORKBENCH_BIND_HOST", "127.0.0.1")

# ============================================================================
# Application setup
# ============================================================================

app = FastAPI(
    title="AAC Workbench",
    description="Feature panels, chat sessions and interpretation suggestions",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Request Models
# ============================================================================


class NavigateRequest(BaseModel):
    path: str = ""
    feature: str | None = None


class PanelActionRequest(BaseModel):
    action: Literal["open", "close", "toggle", "size"]
    size: float | None = None


class ChatModeRequest(BaseModel):
    mode: str | None = None
    toggle: bool = False
    size: float | None = None


class SendMessageRequest(BaseModel):
    content: str
    reply_type: ReplyType = ReplyType.html
    additional_metadata: dict[str, Any] | None = None


class NewSessionRequest(BaseModel):
    mode: str | None = None


class SubjectRequest(BaseModel):
    subject_id: str | None = None
    user_id: str | None = None


class InterpretationRequest(BaseModel):
    subject_id: str
    original_input: str
    interpreted_meaning: str


class HistoricalSuggestionsRequest(BaseModel):
    subject_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("subjectId", "studentId", "subject_id"),
    )
    current_input: str | None = Field(
        default=None,
        validation_alias=AliasChoices("currentInput", "current_input"),
    )


# ============================================================================
# Workbench setup (lazy init on first request)
# ============================================================================

_workbench: Workbench | None = None
_workbench_started = False


def _build_key_store() -> SessionKeyStore:
    if WORKBENCH_STATE_DIR:
        return FileSessionKeyStore(Path(WORKBENCH_STATE_DIR) / "chat_sessions.json")
    return MemorySessionKeyStore()


def _get_workbench() -> Workbench:
    global _workbench
    if _workbench is None:
        try:
            direction = TextDirection(WORKBENCH_TEXT_DIRECTION)
        except ValueError:
            logger.warning("Unknown WORKBENCH_TEXT_DIRECTION %r, using ltr", WORKBENCH_TEXT_DIRECTION)
            direction = TextDirection.ltr
        _workbench = Workbench(
            backend=AssistantBackendClient(WORKBENCH_BACKEND_URL, timeout=WORKBENCH_BACKEND_TIMEOUT),
            transition_ms=WORKBENCH_TRANSITION_MS,
            text_direction=direction,
            persist_sessions=WORKBENCH_PERSIST_SESSIONS,
            key_store=_build_key_store(),
        )
    return _workbench


async def _started_workbench() -> Workbench:
    """Workbench with its persisted session restored once."""
    global _workbench_started
    wb = _get_workbench()
    if not _workbench_started:
        _workbench_started = True
        await wb.start()
    return wb


def _require_feature(value: str) -> FeatureId:
    feature = parse_feature(value)
    if feature is None:
        raise HTTPException(status_code=404, detail=f"Unknown feature: {value}")
    return feature


def _chat_payload(wb: Workbench, message: Any = None) -> dict[str, Any]:
    return {
        "message": message.to_wire() if message is not None else None,
        "error": wb.chat.error,
        "error_kind": wb.chat.error_kind,
        "session_id": wb.chat.session_id,
        "invalidations": [list(key) for key in wb.drain_invalidations()],
        "shared_state": wb.shared_state.snapshot(),
    }


# ============================================================================
# Info Endpoints
# ============================================================================


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.get("/api/info")
async def api_info() -> dict[str, Any]:
    """JSON endpoint with API info and available endpoints."""
    return {
        "name": "AAC Workbench",
        "version": __version__,
        "backend": WORKBENCH_BACKEND_URL,
        "persist_sessions": WORKBENCH_PERSIST_SESSIONS,
        "features": [
            {
                "id": c.id.value,
                "path_prefix": c.path_prefix,
                "position": c.position.value,
                "default_size": c.default_size,
                "min_size": c.min_size,
                "max_size": c.max_size,
                "has_bottom_bar": c.has_bottom_bar,
                "is_full_screen": c.is_full_screen,
            }
            for c in FEATURE_TABLE.values()
        ],
        "endpoints": {
            "workbench": "/api/workbench",
            "navigate": "/api/navigate",
            "panel": "/api/panels/{feature}",
            "chat_mode": "/api/chat/mode",
            "chat": "/api/chat",
            "chat_send": "/api/chat/messages",
            "chat_new": "/api/chat/sessions/new",
            "chat_load": "/api/chat/sessions/{id}/load",
            "subject": "/api/subject",
            "interpretations": "/api/interpretations",
            "historical_suggestions": "/api/historical-suggestions",
        },
    }


# ============================================================================
# Workbench Endpoints
# ============================================================================


@app.get("/api/workbench")
async def workbench_state() -> dict[str, Any]:
    wb = await _started_workbench()
    return wb.snapshot()


@app.post("/api/navigate")
async def navigate(request: NavigateRequest) -> dict[str, Any]:
    """Apply a navigation path, or navigate to a feature by id."""
    wb = await _started_workbench()
    if request.feature is not None:
        if not wb.panels.set_active_feature(request.feature):
            raise HTTPException(status_code=404, detail=f"Unknown feature: {request.feature}")
    else:
        wb.navigate(request.path or "/")
    return wb.panels.snapshot()


@app.post("/api/panels/{feature}")
async def panel_action(feature: str, request: PanelActionRequest) -> dict[str, Any]:
    wb = await _started_workbench()
    target = _require_feature(feature)
    if request.action == "open":
        wb.panels.open_panel(target)
    elif request.action == "close":
        wb.panels.close_panel(target)
    elif request.action == "toggle":
        wb.panels.toggle_panel(target)
    else:
        if request.size is None:
            raise HTTPException(status_code=400, detail="size is required for action 'size'")
        wb.panels.set_panel_size(target, request.size)
    return wb.panels.snapshot()


@app.post("/api/chat/mode")
async def chat_mode(request: ChatModeRequest) -> dict[str, Any]:
    wb = await _started_workbench()
    if request.toggle:
        wb.panels.toggle_chat_mode()
    elif request.mode is not None:
        try:
            mode = ChatMode(request.mode)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown chat mode: {request.mode}")
        if not wb.panels.set_chat_mode(mode):
            raise HTTPException(
                status_code=409,
                detail=f"Chat mode '{mode.value}' is not available on a full-screen feature",
            )
    if request.size is not None:
        wb.panels.set_chat_size(request.size)
    return wb.panels.snapshot()


# ============================================================================
# Chat Endpoints
# ============================================================================


@app.post("/api/chat/messages")
async def send_message(request: SendMessageRequest) -> dict[str, Any]:
    """Send a message through the chat session manager."""
    wb = await _started_workbench()
    try:
        validate_message_content(request.content)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if wb.chat.is_sending:
        raise HTTPException(status_code=409, detail="A message is already being sent")

    message = await wb.chat.send_message(
        request.content,
        reply_type=request.reply_type,
        additional_metadata=request.additional_metadata,
    )
    return _chat_payload(wb, message)


@app.get("/api/chat")
async def chat_state() -> dict[str, Any]:
    wb = await _started_workbench()
    return wb.chat.snapshot()


@app.post("/api/chat/sessions/new")
async def new_session(request: NewSessionRequest) -> dict[str, Any]:
    wb = await _started_workbench()
    mode = _require_feature(request.mode) if request.mode else None
    wb.chat.start_new_session(mode)
    return wb.chat.snapshot()


@app.post("/api/chat/sessions/{session_id}/load")
async def load_session(session_id: str) -> dict[str, Any]:
    wb = await _started_workbench()
    if not await wb.chat.load_session(session_id):
        raise HTTPException(status_code=502, detail=wb.chat.error or "Failed to load session")
    return wb.chat.snapshot()


@app.post("/api/subject")
async def set_subject(request: SubjectRequest) -> dict[str, Any]:
    wb = await _started_workbench()
    if request.user_id is not None:
        wb.chat.set_user(request.user_id)
    wb.set_subject(request.subject_id)
    return wb.chat.snapshot()


# ============================================================================
# Interpretation Endpoints
# ============================================================================


@app.post("/api/interpretations")
async def add_interpretation(request: InterpretationRequest) -> dict[str, Any]:
    """Record a confirmed interpretation in a subject's history."""
    wb = _get_workbench()
    record = wb.interpretations.add(
        request.subject_id, request.original_input, request.interpreted_meaning,
    )
    return {"success": True, "record": record.model_dump(mode="json")}


@app.post("/api/historical-suggestions")
async def historical_suggestions(request: HistoricalSuggestionsRequest) -> dict[str, Any]:
    """Suggest past interpretations for a subject based on input patterns."""
    if not request.subject_id or not request.current_input:
        raise HTTPException(
            status_code=400,
            detail="Subject ID and current input are required",
        )
    wb = _get_workbench()
    analysis = wb.interpretations.analyze(request.subject_id, request.current_input)
    return {
        "success": True,
        "suggestions": suggestions_to_dicts(analysis.suggestions),
        "totalPatterns": analysis.total_patterns,
    }


# ============================================================================
# CLI Entry Point
# ============================================================================


def main() -> None:
    """Run the workbench server."""
    import uvicorn

    uvicorn.run(
        "aac_workbench.adapter:app",
        host=WORKBENCH_BIND_HOST,
        port=8000,
    )


if __name__ == "__main__":
    main()
