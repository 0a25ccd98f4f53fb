"""
Transaction endpoints
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from .deps import FlashPaySystem, get_current_principal, get_system
from .schemas import AccountResponse, TransferRequest, TransferResponse
from ..exceptions import ForbiddenOperation, TransferNotFound
from ..tokens import Principal


router = APIRouter()
accounts_router = APIRouter()


@router.post("", response_model=TransferResponse, status_code=201)
def create_transfer(
    request: TransferRequest,
    principal: Principal = Depends(get_current_principal),
    system: FlashPaySystem = Depends(get_system)
):
    """Transfer funds from the authenticated account"""
    transfer = system.transfer_engine.transfer(
        sender_id=principal.account_id,
        receiver_id=request.receiver_id,
        amount=request.amount
    )
    return TransferResponse.from_transfer(transfer)


@router.get("/{transfer_id}", response_model=TransferResponse)
def get_transfer(
    transfer_id: str,
    principal: Principal = Depends(get_current_principal),
    system: FlashPaySystem = Depends(get_system)
):
    """Get a transfer the authenticated account took part in"""
    transfer = system.transfer_engine.get_transfer(transfer_id)
    # Unknown and foreign transfers look the same to the caller
    if not transfer or not transfer.involves(principal.account_id):
        raise TransferNotFound(f"Transfer {transfer_id} not found", transfer_id=transfer_id)
    return TransferResponse.from_transfer(transfer)


@accounts_router.get("/{account_id}/transactions", response_model=List[TransferResponse])
def list_account_transfers(
    account_id: str,
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_current_principal),
    system: FlashPaySystem = Depends(get_system)
):
    """List transfers for the authenticated account, most recent first"""
    if account_id != principal.account_id:
        raise ForbiddenOperation("Cannot list transfers of another account", account_id=account_id)
    transfers = system.transfer_engine.get_account_transfers(account_id, limit=limit)
    return [TransferResponse.from_transfer(t) for t in transfers]


@accounts_router.get("", response_model=List[AccountResponse])
def list_accounts(
    principal: Principal = Depends(get_current_principal),
    system: FlashPaySystem = Depends(get_system)
):
    """List all accounts"""
    accounts = sorted(system.account_store.list_accounts(), key=lambda a: a.created_at)
    return [AccountResponse.from_account(account) for account in accounts]
