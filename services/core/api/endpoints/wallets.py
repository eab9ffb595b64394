"""
Wallet API Endpoints
"""
from fastapi import APIRouter, Depends, HTTPException

from dependencies import ServiceContainer, get_container, get_owner
from identity import format_address
from schemas import WalletCreated, WalletRecoverRequest, WalletView

router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.post("", response_model=WalletCreated, status_code=201)
async def create_wallet(
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    """The recovery phrase is only ever returned here"""
    created = await services.wallets.create_wallet(owner)
    return WalletCreated(
        owner=created.owner,
        address=created.address,
        recovery_phrase=created.recovery_phrase,
        created_at=created.created_at
    )


@router.post("/recover", response_model=WalletView)
async def recover_wallet(
    req: WalletRecoverRequest,
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    wallet = await services.wallets.recover_wallet(owner, req.recovery_phrase)
    return WalletView.model_validate(wallet)


@router.get("/me")
async def get_my_wallet(
    owner: str = Depends(get_owner),
    services: ServiceContainer = Depends(get_container)
):
    wallet = await services.wallets.get_wallet(owner)
    if wallet is None:
        raise HTTPException(status_code=404, detail="No wallet for this owner")
    return {
        **WalletView.model_validate(wallet).model_dump(),
        "display": format_address(wallet.address)
    }
