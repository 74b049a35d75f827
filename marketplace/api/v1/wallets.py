"""Wallet API endpoints for the calling user."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Header, Query

from marketplace.api.deps import AppSettings, CurrentUser, SessionMaker
from marketplace.db.unit_of_work import retry_transient, unit_of_work
from marketplace.schemas.wallet import (
    LedgerTransactionRead,
    TransferRequest,
    TransferResponse,
    WalletRead,
)
from marketplace.services.wallet_ledger import PeerTransfer, WalletLedger

router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.get("/me", response_model=WalletRead)
async def get_my_wallet(
    current_user: CurrentUser,
    session_maker: SessionMaker,
) -> WalletRead:
    async with unit_of_work(session_maker) as session:
        wallet = await WalletLedger(session).get_wallet_for_user(current_user.id)
    return WalletRead.model_validate(wallet)


@router.get("/me/transactions", response_model=list[LedgerTransactionRead])
async def list_my_transactions(
    current_user: CurrentUser,
    session_maker: SessionMaker,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[LedgerTransactionRead]:
    """Ledger rows affecting the caller's wallet, newest first."""
    async with unit_of_work(session_maker) as session:
        ledger = WalletLedger(session)
        wallet = await ledger.get_wallet_for_user(current_user.id)
        rows = await ledger.history(wallet.id, limit=limit, offset=offset)
    return [LedgerTransactionRead.model_validate(row) for row in rows]


@router.post("/transfer", response_model=TransferResponse, status_code=201)
async def transfer_funds(
    request: TransferRequest,
    current_user: CurrentUser,
    session_maker: SessionMaker,
    settings: AppSettings,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key", max_length=200)] = None,
) -> TransferResponse:
    """
    Send part of the caller's balance to another user's wallet.

    - **to_user_id**: recipient
    - **amount**: positive, at most 4 decimal places
    - **description**: optional note stored on both ledger rows

    Errors: 402 insufficient funds, 404 either party without a wallet,
    422 self-transfer or currency mismatch, 423 wallet not active.
    """
    key = idempotency_key or str(uuid.uuid4())

    async def run() -> PeerTransfer:
        async with unit_of_work(session_maker, settings.LOCK_TIMEOUT_MS) as session:
            return await WalletLedger(session).transfer_between_users(
                current_user.id,
                request.to_user_id,
                request.amount,
                key,
                description=request.description,
            )

    result = await retry_transient(run, attempts=settings.TRANSIENT_RETRY_ATTEMPTS)
    return TransferResponse(
        debit_transaction_id=result.debit_transaction_id,
        credit_transaction_id=result.credit_transaction_id,
        amount=result.amount,
        new_balance=result.sender_balance,
    )
