"""
FastAPI layer exposing the rendition optimizer.

Endpoints:
 - GET /health
 - POST /api/optimize                 single rendition, form-data wire format
 - GET|PUT /settings                  live optimization settings
 - POST|GET|DELETE /images            submit, list, clear
 - GET|DELETE /images/{id}            inspect, remove
 - POST /images/{id}/requeue          explicit resubmission
 - DELETE /images/{id}/renditions/{w} discard one rendition
 - GET /images/{id}/download, /images/{id}/renditions/{w}/download
 - POST /batch                        optimize all idle images
"""

from __future__ import annotations

import base64
import logging
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, PositiveInt

from . import codec, config
from .errors import BatchInProgressError, InvalidTransitionError, JobNotFoundError
from .executor import execute
from .models import OptimizeSettings, RenditionSpec, ResizeMode, SourceImage
from .registry import ImageJob
from .session import OptimizerSession, UploadedFile
from .utils import savings_percent

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Rendition Optimizer Service", version="0.1.0")
app.state.session = OptimizerSession(service_settings=settings)


class SettingsBody(BaseModel):
    outputFormat: str = "jpeg"
    predefinedWidths: List[PositiveInt] = Field(default_factory=lambda: [400, 800])
    customWidth: Optional[int] = None
    quality: int = Field(80, ge=1, le=100)
    preserveAspectRatio: bool = True
    preventUpscaling: bool = True
    preserveMetadata: bool = False

    def to_settings(self) -> OptimizeSettings:
        return OptimizeSettings(
            output_format=self.outputFormat,
            predefined_widths=frozenset(self.predefinedWidths),
            custom_width=self.customWidth,
            quality=self.quality,
            preserve_aspect_ratio=self.preserveAspectRatio,
            prevent_upscaling=self.preventUpscaling,
            preserve_metadata=self.preserveMetadata,
        )

    @classmethod
    def from_settings(cls, value: OptimizeSettings) -> "SettingsBody":
        return cls(
            outputFormat=value.output_format,
            predefinedWidths=sorted(value.predefined_widths),
            customWidth=value.custom_width,
            quality=value.quality,
            preserveAspectRatio=value.preserve_aspect_ratio,
            preventUpscaling=value.prevent_upscaling,
            preserveMetadata=value.preserve_metadata,
        )


class OptimizeResponse(BaseModel):
    success: bool = True
    dataUrl: str
    optimizedSize: int
    format: str
    width: int


class RenditionSummary(BaseModel):
    width: int
    height: int
    size: int
    format: str
    savingsPercent: int


class FailureSummary(BaseModel):
    width: int
    errorType: str
    message: str


class JobSummary(BaseModel):
    id: str
    filename: str
    width: int
    height: int
    originalSize: int
    state: str
    progress: int
    renditions: List[RenditionSummary]
    failures: List[FailureSummary]
    error: Optional[str] = None

    @classmethod
    def from_job(cls, job: ImageJob) -> "JobSummary":
        return cls(
            id=job.id,
            filename=job.source.filename,
            width=job.source.width,
            height=job.source.height,
            originalSize=job.source.size,
            state=job.state.value,
            progress=job.progress,
            renditions=[
                RenditionSummary(
                    width=r.effective_width,
                    height=r.height,
                    size=r.byte_size,
                    format=r.mime_type,
                    savingsPercent=savings_percent(job.source.size, r.byte_size),
                )
                for r in job.renditions
            ],
            failures=[
                FailureSummary(width=f.requested_width, errorType=f.error_type, message=f.message)
                for f in job.failures
            ],
            error=job.error,
        )


class RejectedUpload(BaseModel):
    filename: str
    reason: str


class SubmitResponse(BaseModel):
    accepted: List[JobSummary]
    rejected: List[RejectedUpload]


class BatchResponse(BaseModel):
    queued: int


def get_session(request: Request) -> OptimizerSession:
    return request.app.state.session


def _parse_int(value: Optional[str], default: int) -> int:
    """Integer form field; empty, zero or unparseable values take the default."""
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed or default


def _job_or_404(session: OptimizerSession, job_id: str) -> ImageJob:
    try:
        return session.registry.get(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _attachment(filename: str, media_type: str, content: bytes) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/optimize", response_model=OptimizeResponse)
def optimize_rendition(
    file: Optional[UploadFile] = File(None),
    width: Optional[str] = Form(None),
    quality: Optional[str] = Form(None),
    output_format: Optional[str] = Form(None, alias="format"),
    preserveAspectRatio: Optional[str] = Form(None),
    preventUpscaling: Optional[str] = Form(None),
    removeMetadata: Optional[str] = Form(None),
):
    if file is None:
        return JSONResponse(status_code=400, content={"error": "No file provided"})

    target_width = _parse_int(width, settings.default_width)
    target_quality = min(max(_parse_int(quality, settings.default_quality), 1), 100)
    spec = RenditionSpec(
        target_width_requested=target_width,
        resize_mode=ResizeMode.FIT_INSIDE if preserveAspectRatio == "true" else ResizeMode.EXACT_WIDTH,
        prevent_upscaling=preventUpscaling == "true",
        output_format=output_format or settings.default_format,
        quality=target_quality,
        strip_metadata=removeMetadata == "true",
    )

    try:
        data = file.file.read()
        src_w, src_h = codec.probe_dimensions(data)
        source = SourceImage(
            filename=file.filename or "upload",
            data=data,
            width=src_w,
            height=src_h,
            content_type=file.content_type,
        )
        result = execute(source, spec, settings)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Optimization error: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to optimize image", "details": str(exc)},
        )

    encoded = base64.b64encode(result.encoded_bytes).decode("ascii")
    return OptimizeResponse(
        dataUrl=f"data:{result.mime_type};base64,{encoded}",
        optimizedSize=result.byte_size,
        format=result.mime_type,
        width=result.effective_width,
    )


@app.get("/settings", response_model=SettingsBody)
def read_settings(session: OptimizerSession = Depends(get_session)):
    return SettingsBody.from_settings(session.settings_store.current())


@app.put("/settings", response_model=SettingsBody)
def update_settings(body: SettingsBody, session: OptimizerSession = Depends(get_session)):
    try:
        updated = session.settings_store.replace(body.to_settings())
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve
    return SettingsBody.from_settings(updated)


@app.post("/images", response_model=SubmitResponse)
def submit_images(
    files: List[UploadFile] = File(...),
    session: OptimizerSession = Depends(get_session),
):
    uploads = [
        UploadedFile(filename=f.filename or "upload", data=f.file.read(), content_type=f.content_type)
        for f in files
    ]
    result = session.submit_images(uploads)
    if not result.accepted and result.rejected:
        raise HTTPException(status_code=400, detail=[reason for _, reason in result.rejected])
    return SubmitResponse(
        accepted=[JobSummary.from_job(job) for job in result.accepted],
        rejected=[RejectedUpload(filename=name, reason=reason) for name, reason in result.rejected],
    )


@app.get("/images", response_model=List[JobSummary])
def list_images(session: OptimizerSession = Depends(get_session)):
    return [JobSummary.from_job(job) for job in session.registry.jobs()]


@app.delete("/images", status_code=204)
def clear_images(session: OptimizerSession = Depends(get_session)):
    session.registry.clear()
    return Response(status_code=204)


@app.get("/images/{job_id}", response_model=JobSummary)
def read_image(job_id: str, session: OptimizerSession = Depends(get_session)):
    return JobSummary.from_job(_job_or_404(session, job_id))


@app.delete("/images/{job_id}", status_code=204)
def remove_image(job_id: str, session: OptimizerSession = Depends(get_session)):
    if not session.registry.remove(job_id):
        raise HTTPException(status_code=404, detail=f"Unknown job {job_id}")
    return Response(status_code=204)


@app.post("/images/{job_id}/requeue", response_model=JobSummary)
def requeue_image(job_id: str, session: OptimizerSession = Depends(get_session)):
    try:
        job = session.registry.requeue(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return JobSummary.from_job(job)


@app.delete("/images/{job_id}/renditions/{width}", response_model=JobSummary)
def remove_rendition(job_id: str, width: int, session: OptimizerSession = Depends(get_session)):
    try:
        session.registry.remove_rendition(job_id, width)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JobSummary.from_job(_job_or_404(session, job_id))


@app.get("/images/{job_id}/download")
def download_original(job_id: str, session: OptimizerSession = Depends(get_session)):
    try:
        filename, media_type, content = session.download(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _attachment(filename, media_type, content)


@app.get("/images/{job_id}/renditions/{width}/download")
def download_rendition(job_id: str, width: int, session: OptimizerSession = Depends(get_session)):
    try:
        filename, media_type, content = session.download(job_id, width)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _attachment(filename, media_type, content)


async def _run_batch_task(session: OptimizerSession) -> None:
    try:
        await session.optimize()
    except BatchInProgressError:
        logger.warning("Batch request ignored: another batch is running")


@app.post("/batch", response_model=BatchResponse, status_code=202)
def start_batch(
    background_tasks: BackgroundTasks,
    body: Optional[SettingsBody] = None,
    session: OptimizerSession = Depends(get_session),
):
    if session.batch_running:
        raise HTTPException(status_code=409, detail="A batch is already running")
    if body is not None:
        try:
            session.settings_store.replace(body.to_settings())
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve)) from ve
    queued = len(session.registry.idle_job_ids())
    background_tasks.add_task(_run_batch_task, session)
    return BatchResponse(queued=queued)
