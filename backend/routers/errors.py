# routers/errors.py — Read-only view of the TT-DOMAIN-NUMBER error catalogue
from fastapi import APIRouter, Depends, HTTPException

from auth import get_current_user, CurrentUser
from errors import ERROR_CATALOGUE

router = APIRouter(prefix="/api/v1/errors", tags=["Error Registry"])


@router.get("/catalogue")
async def get_error_catalogue(
    user: CurrentUser = Depends(get_current_user),
):
    """Get the full error code catalogue"""
    return {
        "catalogue": ERROR_CATALOGUE,
        "total": len(ERROR_CATALOGUE),
        "domains": sorted({code.split("-")[1] for code in ERROR_CATALOGUE.keys()}),
    }


@router.get("/catalogue/{code}")
async def get_error_code(
    code: str,
    user: CurrentUser = Depends(get_current_user),
):
    entry = ERROR_CATALOGUE.get(code.upper())
    if not entry:
        raise HTTPException(status_code=404, detail=f"Unknown error code: {code}")
    return {"code": code.upper(), **entry}
