from pathlib import Path
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from ..config import settings
from ..db import SessionLocal
from ..errors import InvalidUploadError, UploadError
from ..schemas.uploads import PartForm, UploadResponse
from ..services.commit import CommitPipeline
from ..services.owners import OwnerDirectory
from ..services.progress import tracker
from ..services.uploads import UploadService
from ..storage.factory import get_storage


logger = structlog.get_logger(__name__)

router = APIRouter(tags=["uploads"])


def get_upload_service() -> UploadService:
    commit = CommitPipeline(
        storage=get_storage(settings),
        owners=OwnerDirectory(SessionLocal),
        expires_at=settings.object_expires_at,
    )
    return UploadService(
        uploads_root=Path(settings.uploads_root),
        tracker=tracker,
        commit=commit,
        chunk_dir_name=settings.chunk_dir_name,
        max_file_size=settings.max_file_size,
    )


def _reply(payload: UploadResponse) -> JSONResponse:
    # text/plain keeps old iframe-based upload clients from offering a download
    return JSONResponse(payload.body(), media_type="text/plain")


@router.post("/upload")
async def upload(
    request: Request,
    owner_id: Optional[str] = Query(default=None, alias="_id"),
    service: UploadService = Depends(get_upload_service),
):
    async with request.form() as form:
        try:
            part = form.get(settings.file_input_name)
            if not isinstance(part, UploadFile):
                raise InvalidUploadError(f"missing file field {settings.file_input_name!r}")
            try:
                fields = PartForm.model_validate(
                    {k: v for k, v in form.items() if isinstance(v, str)}
                )
            except ValidationError as e:
                raise InvalidUploadError(str(e)) from e

            result = await service.handle_part(fields, part.file, owner_id=owner_id, size=part.size)
        except UploadError as e:
            logger.warning(
                "upload_failed",
                error=str(e),
                kind=type(e).__name__,
                prevent_retry=e.prevent_retry,
            )
            return _reply(
                UploadResponse(
                    success=False,
                    error=e.client_message,
                    prevent_retry=True if e.prevent_retry else None,
                )
            )

    logger.info(
        "upload_part_accepted",
        upload_id=result.upload_id,
        combined=result.combined,
        object_key=result.object_key,
    )
    return _reply(UploadResponse(success=True))


@router.delete("/upload/{uuid}")
async def delete_upload(uuid: str, service: UploadService = Depends(get_upload_service)):
    try:
        await service.delete_upload(uuid)
    except UploadError as e:
        logger.error("delete_failed", upload_id=uuid, error=str(e))
        return Response(status_code=500)
    return Response(status_code=200)
