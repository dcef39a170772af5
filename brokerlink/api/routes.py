"""
FastAPI routes for the credential lifecycle and quote read path.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from brokerlink.core.errors import (
    AuthenticationFailedError,
    BrokerlinkError,
    InvalidRefreshTokenFormat,
    NoAvailablePersonError,
    NoRefreshTokenError,
    SymbolNotFoundError,
    UpstreamAuthError,
    UpstreamUnavailableError,
)
from brokerlink.dependencies import (
    get_quote_service,
    get_symbol_service,
    get_token_manager,
    require_internal_api_key,
)
from brokerlink.models.credentials import PersonHealth, TokenStatus
from brokerlink.models.market import Symbol
from brokerlink.schemas import (
    AccessTokenResponse,
    CacheClearResponse,
    ConnectionTestResponse,
    QuoteListResponse,
    QuoteResponse,
    RefreshTokenResponse,
    SetupPersonRequest,
    SetupPersonResponse,
    SymbolListResponse,
)

router = APIRouter()
auth_router = APIRouter(prefix="/auth", dependencies=[Depends(require_internal_api_key)])
logger = logging.getLogger(__name__)


def _reconnect_detail(person_name: str) -> str:
    return f"Reconnect brokerage account for {person_name}"


def _to_http_exception(exc: BrokerlinkError) -> HTTPException:
    """Map a domain failure onto the status the caller should act on."""
    if isinstance(exc, InvalidRefreshTokenFormat):
        return HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NoRefreshTokenError):
        return HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail=f"{exc.person_name} is not enrolled; {_reconnect_detail(exc.person_name)}",
        )
    if isinstance(exc, AuthenticationFailedError):
        return HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED, detail=_reconnect_detail(exc.person_name)
        )
    if isinstance(exc, UpstreamAuthError):
        if exc.requires_reenrollment:
            return HTTPException(
                status_code=HTTPStatus.UNAUTHORIZED, detail=_reconnect_detail(exc.person_name)
            )
        return HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, SymbolNotFoundError):
        return HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=str(exc))
    if isinstance(exc, (UpstreamUnavailableError, NoAvailablePersonError)):
        return HTTPException(status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail=str(exc))
    logger.error("Unmapped domain error: %s", exc)
    return HTTPException(status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@auth_router.get("/access-token/{person_name}", response_model=AccessTokenResponse)
async def get_access_token(
    person_name: str,
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> AccessTokenResponse:
    """Return a valid access token, refreshing the pair when needed."""
    try:
        grant = await token_manager.get_valid_access_token(person_name)
    except BrokerlinkError as exc:
        raise _to_http_exception(exc) from exc
    return AccessTokenResponse(
        access_token=grant.access_token,
        api_server=grant.api_server,
        person_name=grant.person_name,
        expires_at=grant.expires_at,
    )


@auth_router.post("/refresh-token/{person_name}", response_model=RefreshTokenResponse)
async def refresh_token(
    person_name: str,
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> RefreshTokenResponse:
    try:
        grant = await token_manager.refresh_access_token(person_name)
    except BrokerlinkError as exc:
        raise _to_http_exception(exc) from exc
    return RefreshTokenResponse(
        person_name=grant.person_name,
        api_server=grant.api_server,
        expires_at=grant.expires_at,
    )


@auth_router.get("/token-status/{person_name}", response_model=TokenStatus)
async def get_token_status(
    person_name: str,
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> TokenStatus:
    return token_manager.get_token_status(person_name)


@auth_router.post("/test-connection/{person_name}", response_model=ConnectionTestResponse)
async def test_connection(
    person_name: str,
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> ConnectionTestResponse:
    try:
        result = await token_manager.test_connection(person_name)
    except BrokerlinkError as exc:
        raise _to_http_exception(exc) from exc
    return ConnectionTestResponse(
        person_name=result.person_name,
        api_server=result.api_server,
        server_time=result.server_time,
    )


@auth_router.post(
    "/setup-person",
    response_model=SetupPersonResponse,
    status_code=HTTPStatus.CREATED,
)
async def setup_person(
    payload: SetupPersonRequest,
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> SetupPersonResponse:
    """Enroll a person; the token is verified upstream before anything is stored."""
    try:
        result = await token_manager.setup_person_token(
            payload.person_name, payload.refresh_token
        )
    except BrokerlinkError as exc:
        raise _to_http_exception(exc) from exc
    return SetupPersonResponse(person_name=result.person_name, api_server=result.api_server)


@auth_router.delete("/persons/{person_name}", status_code=HTTPStatus.OK)
async def delete_person(
    person_name: str,
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> dict:
    token_manager.delete_person_tokens(person_name)
    return {"status": "deleted", "person_name": person_name}


@router.get("/persons", response_model=List[PersonHealth])
async def list_persons(
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> List[PersonHealth]:
    return token_manager.list_persons()


@router.get("/quotes", response_model=QuoteListResponse)
async def get_quotes(
    quote_service: Annotated[Any, Depends(get_quote_service)],
    symbols: str = Query(..., description="Comma-separated list of tickers."),
    force_refresh: bool = Query(default=False),
) -> QuoteListResponse:
    requested = [symbol.strip().upper() for symbol in symbols.split(",") if symbol.strip()]
    if not requested:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST, detail="At least one symbol is required."
        )
    try:
        results = await quote_service.get_multiple_quotes(
            requested, force_refresh=force_refresh
        )
    except BrokerlinkError as exc:
        raise _to_http_exception(exc) from exc

    served = {result.symbol for result in results}
    return QuoteListResponse(
        quotes=[QuoteResponse.from_result(result) for result in results],
        missing=[symbol for symbol in dict.fromkeys(requested) if symbol not in served],
    )


@router.get("/quotes/{symbol}", response_model=QuoteResponse)
async def get_quote(
    symbol: str,
    quote_service: Annotated[Any, Depends(get_quote_service)],
    force_refresh: Optional[bool] = Query(default=False),
) -> QuoteResponse:
    try:
        result = await quote_service.get_quote(symbol, force_refresh=bool(force_refresh))
    except BrokerlinkError as exc:
        raise _to_http_exception(exc) from exc
    return QuoteResponse.from_result(result)


@router.delete("/quotes/cache", response_model=CacheClearResponse)
async def clear_quote_cache(
    quote_service: Annotated[Any, Depends(get_quote_service)],
) -> CacheClearResponse:
    return CacheClearResponse(cleared=quote_service.clear_cache())


@router.get("/symbols/search", response_model=SymbolListResponse)
async def search_symbols(
    symbol_service: Annotated[Any, Depends(get_symbol_service)],
    prefix: str = Query(..., min_length=1, description="Ticker prefix to search for."),
    limit: int = Query(default=10, ge=1, le=50),
) -> SymbolListResponse:
    if not prefix.strip():
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Search prefix must be at least 1 character",
        )
    try:
        symbols = await symbol_service.search_symbols(prefix, limit=limit)
    except BrokerlinkError as exc:
        raise _to_http_exception(exc) from exc
    return SymbolListResponse(symbols=symbols)


@router.get("/symbols/{symbol_id}", response_model=Symbol)
async def get_symbol(
    symbol_id: int,
    symbol_service: Annotated[Any, Depends(get_symbol_service)],
) -> Symbol:
    try:
        return await symbol_service.get_symbol_details(symbol_id)
    except BrokerlinkError as exc:
        raise _to_http_exception(exc) from exc


router.include_router(auth_router)

__all__ = ["router"]
