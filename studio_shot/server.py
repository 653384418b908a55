from __future__ import annotations

import base64
import binascii
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .inference import NoImageReturnedError, TransformError
from .jobs import (
    InsufficientCreditsError,
    JobNotFoundError,
    JobStateError,
    MissingOriginalError,
    NothingToExportError,
    NotReadyError,
    StudioError,
    UploadedFile,
)
from .jobs.models import ACCEPTED_MEDIA_TYPES
from .studio import StudioShot


logger = logging.getLogger("studio.server")

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://127.0.0.1:5173"


def _error_response(exc: StudioError) -> JSONResponse:
    if isinstance(exc, NotReadyError):
        return JSONResponse({"message": str(exc)}, status_code=503)
    if isinstance(exc, JobNotFoundError):
        return JSONResponse({"message": str(exc)}, status_code=404)
    if isinstance(exc, InsufficientCreditsError):
        return JSONResponse(
            {"message": str(exc), "required": exc.required, "available": exc.available},
            status_code=402,
        )
    if isinstance(exc, (JobStateError, MissingOriginalError, NothingToExportError)):
        return JSONResponse({"message": str(exc)}, status_code=409)
    return JSONResponse({"message": str(exc)}, status_code=400)


def create_app(studio: StudioShot) -> FastAPI:
    manager = studio.manager

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        # Startup: no job action is served before saved images are restored
        await studio.start()
        try:
            yield
        finally:
            await studio.stop()

    app = FastAPI(title="Studio Shot API", lifespan=app_lifespan)
    # CORS for local Vite dev server
    origins = os.getenv("STUDIO_CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StudioError)
    async def studio_error_handler(request: Request, exc: StudioError):
        return _error_response(exc)

    # --- transform wire contract ---
    @app.post("/api/transform")
    async def transform(payload: Dict[str, Any]):
        image = payload.get("image")
        mime_type = payload.get("mimeType")
        if not image or not mime_type:
            return JSONResponse({"message": "Missing image data or MIME type."}, status_code=400)
        try:
            raw = base64.b64decode(image, validate=True)
        except (binascii.Error, ValueError):
            return JSONResponse({"message": "Image data is not valid base64."}, status_code=400)
        try:
            result = await studio.transform.transform(raw, mime_type)
        except NoImageReturnedError as e:
            logger.error(f"Model returned no image: {e.model_text}")
            return JSONResponse({"message": str(e)}, status_code=500)
        except TransformError as e:
            logger.error(f"Error in /api/transform: {e}")
            return JSONResponse({"message": str(e) or "An internal server error occurred."}, status_code=500)
        return {"image": base64.b64encode(result).decode("ascii")}

    @app.api_route("/api/transform", methods=["GET", "PUT", "PATCH", "DELETE"])
    async def transform_method_not_allowed(request: Request):
        return JSONResponse(
            {"message": f"Method {request.method} not allowed"},
            status_code=405,
            headers={"Allow": "POST"},
        )

    # --- session state ---
    @app.get("/api/status")
    async def status():
        stats = studio.progress_tracker.get_stats()
        return {
            "ready": manager.ready,
            "credits": studio.credits.balance,
            "available_credits": studio.credits.available,
            "counts": manager.counts(),
            "to_process": manager.processable_count,
            "processing": manager.is_processing,
            "processed": stats.get("total_processed", 0),
            "selected": sum(1 for j in manager.jobs if j.selected),
        }

    @app.get("/api/images")
    async def list_images():
        return [job.to_dict() for job in manager.jobs]

    @app.post("/api/images")
    async def upload_images(files: List[UploadFile] = File(...)):
        uploads = []
        for f in files:
            data = await f.read()
            uploads.append(
                UploadedFile(
                    name=f.filename or "upload",
                    data=data,
                    media_type=f.content_type or "application/octet-stream",
                )
            )
        result = await manager.intake(uploads)
        return {
            "images": [job.to_dict() for job in result.jobs],
            "failures": [{"name": f.name, "error": f.error} for f in result.failures],
        }

    @app.post("/api/images/process-all")
    async def process_all():
        jobs = await manager.process_all()
        return {"images": [job.to_dict() for job in jobs], "credits": studio.credits.balance}

    @app.post("/api/images/select-all")
    async def select_all(payload: Dict[str, Any]):
        manager.select_all(bool(payload.get("selected", True)))
        return {"ok": True}

    @app.post("/api/images/delete-selected")
    async def delete_selected():
        removed = await manager.delete_selected()
        return {"deleted": removed}

    @app.get("/api/images/export")
    async def export_selected():
        archive = await manager.export_selected()
        return Response(
            archive.data,
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="{archive.filename}"'},
        )

    @app.post("/api/images/{job_id}/process")
    async def process(job_id: str):
        job = await manager.process(job_id)
        return job.to_dict()

    @app.post("/api/images/{job_id}/toggle-select")
    async def toggle_select(job_id: str):
        return manager.toggle_select(job_id).to_dict()

    @app.post("/api/credits/top-up")
    async def top_up(payload: Dict[str, Any]):
        try:
            amount = int(payload.get("amount", 0))
            balance = manager.top_up(amount)
        except (TypeError, ValueError) as e:
            raise HTTPException(400, str(e))
        return {"credits": balance}

    @app.get("/api/display/{token}")
    async def display(token: str):
        entry = studio.handles.resolve(token)
        if entry is None:
            raise HTTPException(404, "display handle not found")
        data, media_type = entry
        if media_type not in ACCEPTED_MEDIA_TYPES:
            media_type = "application/octet-stream"
        return Response(data, media_type=media_type, headers={"X-Content-Type-Options": "nosniff"})

    return app


def app_factory():
    """Build FastAPI app from environment settings. Used by uvicorn with --reload."""
    from .studio import build_studio_from_env

    return create_app(build_studio_from_env())
