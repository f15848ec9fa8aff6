"""FastAPI app (admin surface).

Thin wrapper over the services wired in `lifespan.app_state`: request shape
validation and the optional shared-key check live here, everything else in
the services. Domain errors are mapped to HTTP statuses by `info.code`.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .config.settings import get_settings
from .domain.errors import IngestDomainError
from .lifespan import app_state
from .models.requests import (
    BulkDeleteRequest,
    ContactRequest,
    CreateJobRequest,
    ExtractTextRequest,
    ImportExtractedRequest,
    ImportToursRequest,
    ScrapeUrlRequest,
    UpdateJobRequest,
)
from .observability.logger import get_logger

logger = get_logger(__name__)

STATUS_BY_CODE = {
    "INVALID_INPUT": 400,
    "INVALID_URL": 400,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "RATE_LIMIT_EXCEEDED": 429,
    "UPSTREAM_HTTP_ERROR": 502,
    "NETWORK_TIMEOUT": 504,
}


def status_for(error: IngestDomainError) -> int:
    return STATUS_BY_CODE.get(error.info.code, 500)


async def require_admin_key(x_admin_key: Optional[str] = Header(default=None)) -> None:
    expected = get_settings().admin_api_key
    if expected and x_admin_key != expected:
        raise HTTPException(status_code=401, detail="invalid_admin_key")


def _service(name: str):
    service = app_state.get(name)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name}_unavailable")
    return service


app = FastAPI(title="Tour Ingest Service", version="0.1.0")
api = APIRouter(prefix="/api/v1", dependencies=[Depends(require_admin_key)])


@app.exception_handler(IngestDomainError)
async def domain_error_handler(request: Request, exc: IngestDomainError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.info.code, error=exc.info.message)
    return JSONResponse(
        status_code=status,
        content={"error": {"code": exc.info.code, "message": exc.info.message, "detail": exc.info.detail}},
    )


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


# --- jobs -----------------------------------------------------------------


@api.post("/jobs", status_code=201)
async def create_job(payload: CreateJobRequest):
    job = await _service("job_service").create_job(
        url=payload.url,
        name=payload.name,
        price=payload.price,
        agency_id=payload.agency_id,
        category=payload.category.value if payload.category else None,
    )
    return jsonable_encoder(job)


@api.get("/jobs")
async def list_jobs(limit: int = 50):
    jobs = await _service("job_service").list_jobs(max(1, min(limit, 500)))
    return jsonable_encoder(jobs)


@api.post("/jobs/bulk-delete")
async def bulk_delete_jobs(payload: BulkDeleteRequest):
    deleted = await _service("job_service").bulk_delete_jobs(payload.ids)
    return {"success": True, "deleted": deleted}


@api.post("/jobs/retry-failed")
async def retry_failed_jobs():
    summary = await _service("job_runner").batch_retry_failed()
    return {
        "success": True,
        "totalFailed": summary.total_failed,
        "retriedCount": summary.retried_count,
        "skippedCount": summary.skipped_count,
    }


@api.get("/jobs/{job_id}")
async def get_job(job_id: int):
    return jsonable_encoder(await _service("job_service").get_job(job_id))


@api.patch("/jobs/{job_id}")
async def update_job(job_id: int, payload: UpdateJobRequest):
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("category") is not None:
        fields["category"] = payload.category.value
    job = await _service("job_service").update_job_info(job_id, fields)
    return jsonable_encoder(job)


@api.delete("/jobs/{job_id}")
async def delete_job(job_id: int):
    await _service("job_service").delete_job(job_id)
    return {"success": True}


@api.post("/jobs/{job_id}/execute")
async def execute_job(job_id: int):
    result = await _service("job_runner").execute_job(job_id)
    retry = result.retry
    return {
        "success": result.status.value == "completed",
        "jobId": result.job_id,
        "status": result.status.value,
        "toursFound": result.tours_found,
        "tours": result.tours,
        "sourceType": result.source_type,
        "usedOcr": result.used_ocr,
        "extractedLength": result.extracted_length,
        "errorMessage": result.error_message or None,
        "retry": jsonable_encoder(retry) if retry else None,
    }


@api.post("/jobs/{job_id}/import")
async def import_tours(job_id: int, payload: ImportToursRequest):
    summary = await _service("import_service").import_tours(job_id, payload.tours)
    return {"success": True, "imported": summary.imported, "previewDeleted": summary.preview_deleted}


@api.post("/jobs/{job_id}/pdf-preview")
async def upload_pdf_preview(job_id: int):
    result = await _service("preview_service").upload_pdf_preview(job_id)
    return {"success": True, "pdfUrl": result.pdf_url, "alreadyUploaded": result.already_uploaded}


# --- free text / direct scrape ----------------------------------------------


@api.post("/extract/text")
async def extract_from_text(payload: ExtractTextRequest):
    result = await _service("job_runner").extract_from_text(payload.text_content)
    return {
        "success": True,
        "jobIds": [result.job_id],
        "toursExtracted": len(result.tours),
        "agencyName": result.agency_name,
        "tours": result.tours,
    }


@api.post("/extract/import")
async def import_extracted_tours(payload: ImportExtractedRequest):
    summary = await _service("import_service").import_extracted_tours(
        payload.tours,
        agency_name=payload.agency_name,
        agency_id=payload.agency_id,
    )
    return {
        "success": True,
        "imported": summary.imported,
        "agencyId": summary.agency_id,
        "agencyName": summary.agency_name,
    }


@api.post("/scrape")
async def scrape_url(payload: ScrapeUrlRequest):
    result = await _service("scrape_service").scrape_url(payload.url.strip())
    return {
        "success": True,
        "toursFound": result.tours_found,
        "tours": result.tours,
        "sourceUrl": result.source_url,
        "usedOcr": result.used_ocr,
        "extractedLength": result.extracted_length,
        "sourceType": result.source_type,
    }


# --- agencies / tours -------------------------------------------------------


@api.post("/agencies/{agency_id}/contact")
async def extract_agency_contact(agency_id: int, payload: ContactRequest):
    update = await _service("contact_service").extract_and_update_contact(payload.content, agency_id)
    return {"success": True, "extracted": jsonable_encoder(update.extracted), "updated": update.updated}


@api.post("/tours/remove-duplicates")
async def remove_duplicate_tours():
    deleted = await _service("dedupe_service").remove_duplicate_tours()
    return {"success": True, "deletedCount": deleted}


app.include_router(api)
