"""FastAPI view layer for askpanel."""

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from ..answers.models import AnswerSet, Attachment
from ..answers.render import cite_bullets, conclusion_lines

logger = logging.getLogger(__name__)

# Will be set by main.py
_askpanel_instance = None


class CaptureResponse(BaseModel):
    supported: bool
    listening: bool
    transcript: str


class PlaybackResponse(BaseModel):
    supported: bool
    speaking: bool
    provider: Optional[str] = None


class AttachmentResponse(BaseModel):
    filename: str
    content_type: str
    size: int
    is_image: bool = False


class PendingResponse(BaseModel):
    text: str
    attachment: Optional[AttachmentResponse] = None


class StateResponse(BaseModel):
    """Everything the view observes."""
    capture: CaptureResponse
    playback: PlaybackResponse
    pending: PendingResponse
    answers: Optional[AnswerSet] = None
    loading: bool


class TextRequest(BaseModel):
    text: str


class SpeakRequest(BaseModel):
    provider: Optional[str] = None


class ActionResponse(BaseModel):
    """Response model for actions."""
    success: bool
    message: str
    state: StateResponse


def set_askpanel_instance(instance) -> None:
    """Set the AskPanel instance for API access."""
    global _askpanel_instance
    _askpanel_instance = instance


def _require_instance():
    if _askpanel_instance is None:
        raise HTTPException(status_code=503, detail="askpanel not initialized")
    return _askpanel_instance


def _state(panel) -> StateResponse:
    capture = panel.capture.state
    playback = panel.playback.state
    submission = panel.orchestrator.state

    attachment = None
    if submission.pending.attachment is not None:
        staged = submission.pending.attachment
        attachment = AttachmentResponse(
            filename=staged.filename,
            content_type=staged.content_type,
            size=staged.size,
            is_image=staged.is_image,
        )

    return StateResponse(
        capture=CaptureResponse(
            supported=capture.supported,
            listening=capture.listening,
            transcript=capture.transcript,
        ),
        playback=PlaybackResponse(
            supported=playback.supported,
            speaking=playback.speaking,
            provider=playback.provider,
        ),
        pending=PendingResponse(text=submission.pending.text, attachment=attachment),
        answers=submission.answers,
        loading=submission.loading,
    )


def _action(panel, success: bool, message: str) -> ActionResponse:
    return ActionResponse(success=success, message=message, state=_state(panel))


async def _read_upload(upload: UploadFile) -> Attachment:
    return Attachment(
        filename=upload.filename or "upload",
        content=await upload.read(),
        content_type=upload.content_type or "application/octet-stream",
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="askpanel API",
        description="Ask several answer providers by voice or text",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

    # ==================== Frontend Routes ====================

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request):
        """Serve the answer board."""
        panel = _require_instance()
        answers = panel.orchestrator.answers

        cards = []
        if answers is not None:
            for key, label in panel.config.backend.providers.items():
                cards.append({
                    "key": key,
                    "label": label,
                    "bullets": cite_bullets(answers.results.get(key), answers.sources),
                })

        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "answers": answers,
                "cards": cards,
                "conclusion": conclusion_lines(answers.conclusion) if answers is not None else [],
                "state": _state(panel),
            },
        )

    # ==================== State ====================

    @app.get("/api/state", response_model=StateResponse)
    async def get_state():
        """Get the observable state."""
        return _state(_require_instance())

    @app.get("/api/status")
    async def get_status():
        """Get component status."""
        return _require_instance().get_status()

    # ==================== Capture ====================

    @app.post("/api/capture/start", response_model=ActionResponse)
    async def capture_start():
        """Start listening."""
        panel = _require_instance()
        if not panel.capture.supported:
            raise HTTPException(status_code=409, detail="Voice input unavailable")
        if panel.orchestrator.loading:
            return _action(panel, False, "Busy")

        panel.capture.start()
        return _action(panel, panel.capture.listening, "Listening")

    @app.post("/api/capture/stop", response_model=ActionResponse)
    async def capture_stop():
        """Stop listening."""
        panel = _require_instance()
        if not panel.capture.supported:
            raise HTTPException(status_code=409, detail="Voice input unavailable")

        panel.capture.stop()
        return _action(panel, True, "Stop requested")

    # ==================== Playback ====================

    @app.post("/api/playback/speak", response_model=ActionResponse)
    async def playback_speak(body: Optional[SpeakRequest] = None):
        """Read back the stored answers."""
        panel = _require_instance()
        if not panel.playback.supported:
            raise HTTPException(status_code=409, detail="Voice playback unavailable")

        provider = panel.speak_answer(body.provider if body is not None else None)
        if provider is None:
            return _action(panel, False, "Nothing to play")
        return _action(panel, True, f"Playing {provider}")

    @app.post("/api/playback/stop", response_model=ActionResponse)
    async def playback_stop():
        """Stop playback."""
        panel = _require_instance()
        if not panel.playback.supported:
            raise HTTPException(status_code=409, detail="Voice playback unavailable")

        panel.playback.stop()
        return _action(panel, True, "Stopped")

    # ==================== Input ====================

    @app.put("/api/input/text", response_model=ActionResponse)
    async def set_text(body: TextRequest):
        """Stage question text."""
        panel = _require_instance()
        panel.orchestrator.set_text(body.text)
        return _action(panel, True, "Text staged")

    @app.post("/api/input/attachment", response_model=ActionResponse)
    async def set_attachment(file: UploadFile = File(...)):
        """Stage a file."""
        panel = _require_instance()
        attachment = await _read_upload(file)
        panel.orchestrator.set_attachment(attachment)
        return _action(panel, True, f"Attached {attachment.filename}")

    @app.get("/api/input/attachment")
    async def get_attachment():
        """Serve the staged file, for the preview."""
        panel = _require_instance()
        attachment = panel.orchestrator.pending.attachment
        if attachment is None:
            raise HTTPException(status_code=404, detail="No attachment staged")
        return Response(content=attachment.content, media_type=attachment.content_type)

    @app.delete("/api/input/attachment", response_model=ActionResponse)
    async def clear_attachment():
        """Remove the staged file."""
        panel = _require_instance()
        panel.orchestrator.clear_attachment()
        return _action(panel, True, "Attachment removed")

    @app.delete("/api/input", response_model=ActionResponse)
    async def clear_input():
        """Clear staged text and file."""
        panel = _require_instance()
        panel.orchestrator.clear()
        return _action(panel, True, "Input cleared")

    # ==================== Submit ====================

    @app.post("/api/submit", response_model=ActionResponse)
    async def submit(
        question: Optional[str] = Form(None),
        file: Optional[UploadFile] = File(None),
    ):
        """Submit the staged input; form fields, when given, are staged first."""
        panel = _require_instance()
        orchestrator = panel.orchestrator

        if orchestrator.loading:
            return _action(panel, False, "Busy")

        if question is not None:
            orchestrator.set_text(question)
        if file is not None:
            orchestrator.set_attachment(await _read_upload(file))

        task = orchestrator.submit_nowait()
        if task is None:
            return _action(panel, False, "Nothing to submit")
        return _action(panel, True, "Submitted")

    return app
