"""FastAPI router serving files from temp storage."""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response

from fxgate.storage.service import TempStorageManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["storage"])


def get_storage(request: Request) -> TempStorageManager:
    return request.app.state.storage


@router.get("/temp/{file_id}")
async def download_temp_file(request: Request, file_id: str) -> Response:
    """Serve a stored temp file.

    Raises:
        StorageError 404: FILE_NOT_FOUND for unknown/expired ids,
            FILE_MISSING when the file vanished from disk.
    """
    content, record = get_storage(request).read_temp_file(file_id)
    logger.debug("Serving temp file %s (access #%d)", file_id, record.access_count)
    return Response(
        content=content,
        media_type=record.mime_type,
        headers={
            "X-Content-Type-Options": "nosniff",
            "Content-Disposition": f'inline; filename="{record.filename}"',
            "Cache-Control": "private, max-age=300",
        },
    )
