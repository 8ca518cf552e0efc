"""
API Routes for Identity Chains

Command-style endpoints (no PATCH, no PUT, no DELETE):
- POST /chains                      - Create a chain for an owner
- POST /chains/{owner_id}/events    - Append an event (auth-gated)

Query endpoints:
- GET /chains                       - List all chains
- GET /chains/{owner_id}            - Get one chain
- GET /chains/{owner_id}/verify     - Verify chain integrity

This layer only shapes JSON and maps errors to status codes.
All rules live in IdentityService and below.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ..core import (
    IdentityService,
    InvalidInputError,
    UnauthorizedError,
)
from ..db.store import AlreadyExistsError, NotFoundError, StoreIOError
from ..schemas import AuthContext, IdentityChain, IdentityEvent


router = APIRouter()


# ============================================================
# Dependency Injection
# ============================================================

def get_service(request: Request) -> IdentityService:
    return request.app.state.service


# ============================================================
# Request/Response Models
# ============================================================

class CreateChainRequest(BaseModel):
    """Request to create a chain."""
    owner_id: str = ""
    root_public_key: Optional[str] = Field(
        default=None,
        description="Base64 Ed25519 public key. Omit to have one generated."
    )


class CreateChainResponse(BaseModel):
    """Created chain, plus the private key when the server generated it."""
    chain: IdentityChain
    root_private_key: Optional[str] = Field(
        default=None,
        description="Returned once, only for generated keys. Never stored."
    )


class AppendEventRequest(BaseModel):
    """Request to append an event to a chain."""
    event: IdentityEvent
    signer_private_key: str = ""
    auth: AuthContext = Field(default_factory=AuthContext)


class ChainListResponse(BaseModel):
    chains: list[IdentityChain]


class VerifyResponse(BaseModel):
    """Verification outcome."""
    valid: bool
    status: str
    owner_id: str
    block_count: int
    block_index: Optional[int] = None
    error: Optional[str] = None


def _raise_http(e: Exception) -> None:
    if isinstance(e, InvalidInputError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, UnauthorizedError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="chain not found")
    if isinstance(e, AlreadyExistsError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, StoreIOError):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    raise e


# ============================================================
# Command Endpoints
# ============================================================

@router.post(
    "/chains",
    response_model=CreateChainResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    tags=["Chain Commands"],
    summary="Create an identity chain",
)
def create_chain(
    request: CreateChainRequest,
    service: IdentityService = Depends(get_service),
):
    """
    Create an empty chain bound to a root key.

    If no root_public_key is supplied a keypair is generated and the
    private key is returned in this response only.
    """
    try:
        created = service.create_chain(request.owner_id, request.root_public_key)
    except (InvalidInputError, AlreadyExistsError, StoreIOError) as e:
        _raise_http(e)

    return CreateChainResponse(
        chain=created.chain,
        root_private_key=created.root_private_key,
    )


@router.post(
    "/chains/{owner_id}/events",
    response_model=IdentityChain,
    status_code=status.HTTP_201_CREATED,
    tags=["Chain Commands"],
    summary="Append an event",
)
def append_event(
    owner_id: str,
    request: AppendEventRequest,
    service: IdentityService = Depends(get_service),
):
    """
    Append a signed block to the owner's chain.

    Requires a long phrase plus 2 secondary factors (3 when risk=high),
    and the chain's root private key.
    """
    try:
        return service.append_event(
            owner_id,
            request.event,
            request.signer_private_key,
            request.auth,
        )
    except (InvalidInputError, UnauthorizedError, NotFoundError, StoreIOError) as e:
        _raise_http(e)


# ============================================================
# Query Endpoints
# ============================================================

@router.get(
    "/chains",
    response_model=ChainListResponse,
    tags=["Chain Queries"],
    summary="List chains",
)
def list_chains(service: IdentityService = Depends(get_service)):
    return ChainListResponse(chains=service.list_chains())


@router.get(
    "/chains/{owner_id}",
    response_model=IdentityChain,
    tags=["Chain Queries"],
    summary="Get a chain",
)
def get_chain(owner_id: str, service: IdentityService = Depends(get_service)):
    try:
        return service.get_chain(owner_id)
    except NotFoundError as e:
        _raise_http(e)


@router.get(
    "/chains/{owner_id}/verify",
    response_model=VerifyResponse,
    response_model_exclude_none=True,
    tags=["Chain Queries"],
    summary="Verify chain integrity",
)
def verify_chain(owner_id: str, service: IdentityService = Depends(get_service)):
    """
    Re-derive every hash and signature in the chain.

    An invalid chain is still a 200: the body reports where and why.
    """
    try:
        report = service.verify_chain(owner_id)
    except NotFoundError as e:
        _raise_http(e)

    return VerifyResponse(**report.to_dict())
