"""
D4 Downloads API

Redeems a download token and redirects to the stored PDF.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from core.services import Services, get_db, get_services
from d2_checkout.rate_limiter import get_client_key

from .tokens import DownloadTokenIssuer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["downloads"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


def get_token_issuer(services: Services = Depends(get_services), db: Session = Depends(get_db)) -> DownloadTokenIssuer:
    return services.token_issuer(db)


@router.get("/download/{token}", summary="Download a purchased PDF")
def download(
    token: str,
    request: Request,
    issuer: DownloadTokenIssuer = Depends(get_token_issuer),
) -> RedirectResponse:
    """404 unknown token, 410 expired, 429 out of downloads"""
    result = issuer.redeem(
        token,
        ip_address=get_client_key(request),
        user_agent=request.headers.get("user-agent"),
    )
    return RedirectResponse(url=result["file_url"], status_code=302, headers=NO_CACHE_HEADERS)
