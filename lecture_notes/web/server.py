"""FastAPI application serving the Lecture Notes JSON API."""

from __future__ import annotations

import asyncio
import contextvars
import functools
import logging
import mimetypes
import re
import sys
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

from fastapi import FastAPI, File, Form, Header, HTTPException, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel
from starlette.datastructures import FormData
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from .. import __version__
from ..config import _DEFAULT_MAX_UPLOAD_BYTES, AppConfig
from ..processing import (
    NoteGenerator,
    TranscriptFormatter,
    build_note_generator,
    build_transcript_formatter,
    build_transcription_engine,
)
from ..services.auth import InvalidTokenError, TokenService
from ..services.events import emit_structured_event
from ..services.ingestion import (
    AudioFileMissingError,
    RecordingNotFoundError,
    RecordingProcessor,
    TranscriptNotFoundError,
    TranscriptionEngine,
    UnsupportedAudioError,
    UploadTooLargeError,
    describe_size_limit,
)
from ..services.naming import build_download_name
from ..services.sheets import GoogleSheetsStorage
from ..services.storage import (
    DuplicateUserError,
    RecordingRecord,
    StorageBackend,
    StorageError,
)
from ..services.users import (
    InvalidPasswordError,
    UnknownUserError,
    UserDirectory,
    UserValidationError,
)


T = TypeVar("T")

_MAX_UPLOAD_BYTES = _DEFAULT_MAX_UPLOAD_BYTES

_RECORDING_ID_PATTERN = re.compile(r"^\d+$")


def get_max_upload_bytes() -> int:
    """Return the configured maximum upload size in bytes."""

    return int(_MAX_UPLOAD_BYTES)


def _set_max_upload_bytes(value: int) -> None:
    global _MAX_UPLOAD_BYTES
    _MAX_UPLOAD_BYTES = int(value) if value and value > 0 else _DEFAULT_MAX_UPLOAD_BYTES


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "lecture_notes_request_id",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _collect_correlation_context() -> Dict[str, str]:
    request_id = _REQUEST_ID_VAR.get()
    return {"request_id": str(request_id)} if request_id else {}


class LargeUploadRequest(Request):
    """Request subclass that applies the configured multipart upload limit."""

    async def _get_form(
        self,
        *,
        max_files: int | float = 1000,
        max_fields: int | float = 1000,
        max_part_size: int = 1024 * 1024,
    ) -> FormData:
        configured_limit = get_max_upload_bytes()
        effective_limit = max(int(configured_limit), int(max_part_size)) if configured_limit > 0 else sys.maxsize
        return await super()._get_form(
            max_files=max_files,
            max_fields=max_fields,
            max_part_size=effective_limit,
        )


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope.setdefault("state", {})
        if isinstance(scope["state"], dict):
            scope["state"]["request_id"] = request_id

        async def send_with_request_id(message: Dict[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        token = _REQUEST_ID_VAR.set(request_id)
        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            _REQUEST_ID_VAR.reset(token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("lecture_notes.web.events"), {})


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event(
        "APP_EVENT",
        message,
        context=context,
        correlation=_collect_correlation_context(),
        logger=EVENT_LOGGER,
    )


async def _run_blocking(operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run *operation* in the default executor, keeping the request context."""

    loop = asyncio.get_running_loop()
    context = contextvars.copy_context()
    call = functools.partial(context.run, operation, *args, **kwargs)
    return await loop.run_in_executor(None, call)


def _parse_recording_id(value: str) -> int:
    if not _RECORDING_ID_PATTERN.match(value or ""):
        raise HTTPException(status_code=400, detail="Invalid recording ID")
    return int(value)


def _attachment(content: str, *, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


class TitleUpdatePayload(BaseModel):
    title: Optional[str] = None


class NoteUpdatePayload(BaseModel):
    content: Optional[str] = None


class RegisterPayload(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""


class LoginPayload(BaseModel):
    email: str = ""
    password: str = ""


def _default_user_directory(storage: StorageBackend, config: AppConfig) -> UserDirectory:
    mirror: Optional[StorageBackend] = None
    if config.credentials.sheets_configured and "sheets" not in config.storage_backends:
        mirror = GoogleSheetsStorage.from_credentials(config.credentials)
    return UserDirectory(storage, mirror=mirror)


def create_app(
    storage: StorageBackend,
    *,
    config: AppConfig,
    transcription_engine: Optional[TranscriptionEngine] = None,
    note_generator: Optional[NoteGenerator] = None,
    transcript_formatter: Optional[TranscriptFormatter] = None,
    user_directory: Optional[UserDirectory] = None,
    token_service: Optional[TokenService] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    _set_max_upload_bytes(config.max_upload_bytes)
    app = FastAPI(
        title="Lecture Notes",
        description="Upload lectures, transcribe them and generate study notes",
        version=__version__,
        root_path=root_path or "",
        request_class=LargeUploadRequest,
    )
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    engine = transcription_engine or build_transcription_engine(config)
    notes = note_generator or build_note_generator(config)
    formatter = transcript_formatter or build_transcript_formatter(config)
    users = user_directory or _default_user_directory(storage, config)
    tokens = token_service or TokenService(
        config.credentials.secret_key, ttl_hours=config.token_ttl_hours
    )
    processor = RecordingProcessor(
        config,
        storage,
        transcription_engine=engine,
        note_writer=notes,
    )
    app.state.storage = storage
    app.state.processor = processor
    app.state.users = users

    # ------------------------------------------------------------------
    # Error rendering
    # ------------------------------------------------------------------
    @app.exception_handler(StarletteHTTPException)
    async def render_http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def render_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"success": False, "message": message})

    @app.exception_handler(StorageError)
    async def render_storage_error(_request: Request, exc: StorageError) -> JSONResponse:
        LOGGER.error("Storage failure: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"success": False, "message": "Storage is temporarily unavailable"},
        )

    # Storage backends do disk and network I/O; every call leaves the event loop.
    async def _require_recording(recording_id: int) -> RecordingRecord:
        recording = await _run_blocking(storage.get_recording, recording_id)
        if recording is None:
            raise HTTPException(status_code=404, detail="Recording not found")
        return recording

    # ------------------------------------------------------------------
    # Recordings
    # ------------------------------------------------------------------
    @app.get("/api/recordings")
    async def list_recordings() -> list:
        recordings = await _run_blocking(storage.get_all_recordings)
        return [recording.to_dict() for recording in recordings]

    @app.get("/api/recordings/{recording_id}")
    async def get_recording(recording_id: str) -> Dict[str, Any]:
        recording = await _require_recording(_parse_recording_id(recording_id))
        return recording.to_dict()

    @app.patch("/api/recordings/{recording_id}")
    async def rename_recording(recording_id: str, payload: TitleUpdatePayload) -> Dict[str, Any]:
        identifier = _parse_recording_id(recording_id)
        title = (payload.title or "").strip()
        if not title:
            raise HTTPException(status_code=400, detail="Title is required")
        await _require_recording(identifier)
        updated = await _run_blocking(storage.update_recording_title, identifier, title)
        if updated is None:
            raise HTTPException(status_code=404, detail="Recording not found")
        _log_event("Renamed recording", recording_id=identifier)
        return {
            "success": True,
            "message": "Recording title updated",
            "recording": updated.to_dict(),
        }

    @app.delete("/api/recordings/{recording_id}")
    async def delete_recording(recording_id: str) -> Dict[str, Any]:
        identifier = _parse_recording_id(recording_id)
        _log_event("Deleting recording", recording_id=identifier)
        try:
            deleted = await _run_blocking(processor.delete, identifier)
        except RecordingNotFoundError as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        except OSError as error:
            raise HTTPException(
                status_code=500, detail=f"Failed to remove audio file: {error}"
            ) from error
        if not deleted:
            raise HTTPException(status_code=404, detail="Recording not found")
        return {"success": True, "message": "Recording deleted successfully"}

    @app.post("/api/uploadAudio", status_code=status.HTTP_201_CREATED)
    async def upload_audio(
        file: Optional[UploadFile] = File(None),
        title: Optional[str] = Form(None),
    ) -> Dict[str, Any]:
        if file is None or not file.filename:
            raise HTTPException(status_code=400, detail="No audio file provided")
        _log_event("Uploading audio", filename=file.filename, content_type=file.content_type)
        if file.size is not None and file.size > config.max_upload_bytes:
            await file.close()
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum size is {describe_size_limit(config.max_upload_bytes)}",
            )
        try:
            recording = await _run_blocking(
                processor.store_upload,
                file.file,
                original_name=file.filename,
                content_type=file.content_type,
                title=title,
            )
        except UnsupportedAudioError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        except UploadTooLargeError as error:
            raise HTTPException(status_code=413, detail=str(error)) from error
        finally:
            await file.close()
        return {"success": True, "recording": recording.to_dict()}

    # ------------------------------------------------------------------
    # Transcripts and notes
    # ------------------------------------------------------------------
    @app.post("/api/transcribe/{recording_id}")
    async def transcribe_recording(recording_id: str) -> Dict[str, Any]:
        identifier = _parse_recording_id(recording_id)
        await _require_recording(identifier)
        _log_event("Transcribing recording", recording_id=identifier)
        try:
            transcript, duration = await _run_blocking(processor.transcribe, identifier)
        except (RecordingNotFoundError, AudioFileMissingError) as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        except StorageError:
            raise
        except Exception as error:
            raise HTTPException(
                status_code=500, detail=f"Failed to transcribe audio: {error}"
            ) from error
        response: Dict[str, Any] = {"success": True, "transcript": transcript.to_dict()}
        if duration:
            response["duration"] = duration
        return response

    @app.get("/api/recordings/{recording_id}/transcript")
    async def get_transcript(recording_id: str) -> Dict[str, Any]:
        identifier = _parse_recording_id(recording_id)
        transcript = await _run_blocking(storage.get_transcript_by_recording_id, identifier)
        if transcript is None:
            raise HTTPException(status_code=404, detail="Transcript not found")
        content = await _run_blocking(formatter.format, transcript.content)
        return {"content": content}

    @app.post("/api/generateNote/{recording_id}")
    async def generate_note(recording_id: str) -> Dict[str, Any]:
        identifier = _parse_recording_id(recording_id)
        await _require_recording(identifier)
        _log_event("Generating notes", recording_id=identifier)
        try:
            note = await _run_blocking(processor.generate_notes, identifier)
        except (RecordingNotFoundError, TranscriptNotFoundError) as error:
            raise HTTPException(status_code=404, detail=str(error)) from error
        except StorageError:
            raise
        except Exception as error:
            raise HTTPException(
                status_code=500, detail=f"Failed to generate notes: {error}"
            ) from error
        return {"success": True, "note": note.to_dict()}

    @app.get("/api/recordings/{recording_id}/notes")
    async def get_notes(recording_id: str) -> Dict[str, Any]:
        note = await _run_blocking(storage.get_note_by_recording_id, _parse_recording_id(recording_id))
        if note is None:
            raise HTTPException(status_code=404, detail="Notes not found")
        return {"content": note.content}

    @app.put("/api/recordings/{recording_id}/notes")
    async def edit_notes(recording_id: str, payload: NoteUpdatePayload) -> Dict[str, Any]:
        identifier = _parse_recording_id(recording_id)
        if payload.content is None:
            raise HTTPException(status_code=400, detail="Note content is required")
        existing = await _run_blocking(storage.get_note_by_recording_id, identifier)
        if existing is None:
            raise HTTPException(status_code=404, detail="Notes not found")
        updated = await _run_blocking(storage.update_note, existing.id, payload.content)
        if updated is None:
            raise HTTPException(status_code=404, detail="Notes not found")
        _log_event("Edited notes", recording_id=identifier, note_id=updated.id)
        return {"success": True, "note": updated.to_dict()}

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------
    def _audio_file(filename: str) -> Path:
        try:
            path = processor.audio_path(filename)
        except AudioFileMissingError as error:
            raise HTTPException(status_code=404, detail="Audio file not found") from error
        if not path.is_file():
            raise HTTPException(status_code=404, detail="Audio file not found")
        return path

    @app.get("/api/audio/{filename}")
    async def serve_audio(filename: str) -> FileResponse:
        path = _audio_file(filename)
        media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return FileResponse(path, media_type=media_type)

    @app.get("/api/recordings/{recording_id}/download")
    async def download_audio(recording_id: str) -> FileResponse:
        recording = await _require_recording(_parse_recording_id(recording_id))
        path = _audio_file(recording.filename)
        media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return FileResponse(
            path,
            media_type=media_type,
            filename=build_download_name(recording.title, "audio", path.suffix or ".bin"),
        )

    @app.get("/api/recordings/{recording_id}/transcript/download")
    async def download_transcript(recording_id: str) -> Response:
        recording = await _require_recording(_parse_recording_id(recording_id))
        transcript = await _run_blocking(storage.get_transcript_by_recording_id, recording.id)
        if transcript is None:
            raise HTTPException(status_code=404, detail="Transcript not found")
        return _attachment(
            transcript.content,
            filename=build_download_name(recording.title, "transcript", ".txt"),
            media_type="text/plain; charset=utf-8",
        )

    @app.get("/api/recordings/{recording_id}/notes/download")
    async def download_notes(recording_id: str) -> Response:
        recording = await _require_recording(_parse_recording_id(recording_id))
        note = await _run_blocking(storage.get_note_by_recording_id, recording.id)
        if note is None:
            raise HTTPException(status_code=404, detail="Notes not found")
        return _attachment(
            note.content,
            filename=build_download_name(recording.title, "notes", ".md"),
            media_type="text/markdown; charset=utf-8",
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    @app.post("/api/register", status_code=status.HTTP_201_CREATED)
    async def register(payload: RegisterPayload) -> Dict[str, Any]:
        try:
            user = await _run_blocking(users.register, payload.name, payload.email, payload.password)
        except DuplicateUserError as error:
            raise HTTPException(status_code=409, detail="Email is already registered") from error
        except UserValidationError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        _log_event("Registered user", user_id=user.id)
        return {"success": True, "user": user.to_public_dict()}

    @app.post("/api/login")
    async def login(payload: LoginPayload) -> Dict[str, Any]:
        try:
            user = await _run_blocking(users.authenticate, payload.email, payload.password)
        except (UnknownUserError, InvalidPasswordError) as error:
            raise HTTPException(status_code=401, detail=str(error)) from error
        _log_event("User logged in", user_id=user.id)
        return {"success": True, "token": tokens.issue(user), "user": user.to_public_dict()}

    @app.get("/api/auth/user")
    async def current_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise HTTPException(status_code=401, detail="Not authenticated")
        # Ids differ between backends; the email claim names the account.
        try:
            email = tokens.email_from(token.strip())
        except InvalidTokenError as error:
            raise HTTPException(status_code=401, detail="Invalid or expired token") from error
        user = await _run_blocking(users.get_by_email, email)
        if user is None:
            raise HTTPException(status_code=401, detail="User not found")
        return {"success": True, "user": user.to_public_dict()}

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    @app.get("/api/storage/status")
    async def storage_status() -> Dict[str, Any]:
        status_method = getattr(storage, "status", None)
        if callable(status_method):
            return await _run_blocking(status_method)
        return {"backends": [storage.name], "lastServed": storage.name, "failures": {}}

    @app.get("/api/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "version": __version__}

    LOGGER.debug("Lecture Notes API configured (uploads at %s)", config.uploads_root)
    return app


__all__ = ["create_app", "get_max_upload_bytes"]
