import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse

from snip.dependencies import get_service
from snip.models import CreateRequest, ShortURLRecord, UpdateRequest
from snip.services import BadInput, ResolutionService, ShortenerError

logger = logging.getLogger(__name__)
router = APIRouter()

Service = Annotated[ResolutionService, Depends(get_service)]

ERROR_STATUS = {
    "BAD_INPUT": status.HTTP_400_BAD_REQUEST,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "EXPIRED": status.HTTP_410_GONE,
    "ALREADY_EXISTS": status.HTTP_409_CONFLICT,
    "GENERATION_EXHAUSTED": status.HTTP_503_SERVICE_UNAVAILABLE,
    "INTERNAL": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_response(exc: ShortenerError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content={"error": exc.kind, "detail": exc.message},
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )
    logger.info(f"Rejected malformed request to {request.url.path}: {problems}")
    return error_response(BadInput(f"Malformed request: {problems}"))


def internal_error_response(action: str, exc: Exception) -> JSONResponse:
    logger.error(f"Error {action}: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "INTERNAL", "detail": str(exc)},
    )


# Routes
@router.get("/health")
def health_check():
    health_status = {"status": "healthy"}
    logger.info("Health Check: OK")
    return JSONResponse(content=health_status, status_code=status.HTTP_200_OK)


@router.post("/shorten", response_model=ShortURLRecord, status_code=201)
async def shorten(service: Service, body: CreateRequest):
    try:
        return await service.create(body.url, body.short_code, body.ttl_seconds)
    except ShortenerError as exc:
        return error_response(exc)
    except Exception as exc:
        return internal_error_response("shortening URL", exc)


@router.post("/maintenance/rebuild-filter")
async def rebuild_filter(service: Service):
    try:
        count = await service.rebuildFilter()
        return {"rebuilt": True, "codes": count}
    except ShortenerError as exc:
        return error_response(exc)
    except Exception as exc:
        return internal_error_response("rebuilding membership filter", exc)


@router.get("/urls/{short_code}", response_model=ShortURLRecord)
async def get_url(service: Service, short_code: str):
    try:
        return await service.lookup(short_code)
    except ShortenerError as exc:
        return error_response(exc)
    except Exception as exc:
        return internal_error_response("looking up URL", exc)


@router.patch("/urls/{short_code}", response_model=ShortURLRecord)
async def update_url(service: Service, short_code: str, body: UpdateRequest):
    try:
        return await service.update(short_code, body.url)
    except ShortenerError as exc:
        return error_response(exc)
    except Exception as exc:
        return internal_error_response("updating URL", exc)


@router.delete("/urls/{short_code}")
async def delete_url(service: Service, short_code: str):
    try:
        deleted = await service.delete(short_code)
        return {"deleted": deleted}
    except ShortenerError as exc:
        return error_response(exc)
    except Exception as exc:
        return internal_error_response("deleting URL", exc)


@router.get("/{short_code}")
async def redirect(service: Service, short_code: str):
    try:
        record = await service.lookup(short_code)
        return RedirectResponse(url=record.original_url)
    except ShortenerError as exc:
        return error_response(exc)
    except Exception as exc:
        return internal_error_response("redirecting URL", exc)
