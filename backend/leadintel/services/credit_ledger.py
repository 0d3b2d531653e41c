# backend/leadintel/services/credit_ledger.py
"""
Credit Ledger - transactional metering of provider usage

Every balance change happens inside one database transaction that locks the
client row, computes the new balance, and appends exactly one
CreditTransaction carrying the resulting balance_after. A charge that would
drive the balance below zero rolls back and raises
InsufficientCreditsError.

Same-client mutations inside this process are additionally serialized with
an asyncio.Lock, so databases without row locks (SQLite) keep the guarantee.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Union
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from leadintel.exceptions import InsufficientCreditsError, NotFoundError, ValidationError
from leadintel.models import Client, CreditTransaction, utcnow
from leadintel.schemas.enums import CreditTransactionType

logger = logging.getLogger(__name__)

CENTS = Decimal("0.0001")

Number = Union[Decimal, int, float, str]


def to_credits(value: Number) -> Decimal:
    """Coerce to a 4-place Decimal without float artifacts"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass
class ChargeRequest:
    """One billable operation"""
    base_cost: Number
    source: str
    operation: str
    description: Optional[str] = None
    job_id: Optional[UUID] = None
    margin_percent: Optional[Number] = None  # overrides the client's margin


class CreditLedger:
    """Sole writer of Client.credit_balance"""

    CREDIT_TYPES = {
        CreditTransactionType.PURCHASE,
        CreditTransactionType.ADJUSTMENT,
        CreditTransactionType.REFUND,
    }

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self._locks: Dict[UUID, asyncio.Lock] = {}

    def _lock_for(self, client_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(client_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[client_id] = lock
        return lock

    async def _load_client_for_update(self, session, client_id: UUID) -> Client:
        result = await session.execute(
            select(Client).where(Client.id == client_id).with_for_update()
        )
        client = result.scalar_one_or_none()
        if client is None:
            raise NotFoundError("Client", client_id)
        return client

    async def charge(self, client_id: UUID, request: ChargeRequest) -> CreditTransaction:
        """
        Debit base cost plus margin.

        margin = base_cost * margin_percent / 100, total = base_cost + margin.
        Raises InsufficientCreditsError(required=total, available=balance)
        without touching the balance when total exceeds it.
        """
        base_cost = to_credits(request.base_cost)
        if base_cost < 0:
            raise ValidationError("base_cost must not be negative")

        async with self._lock_for(client_id):
            async with self.session_factory() as session:
                async with session.begin():
                    client = await self._load_client_for_update(session, client_id)

                    margin_percent = (
                        request.margin_percent
                        if request.margin_percent is not None
                        else client.credit_margin_percent or 0
                    )
                    margin = to_credits(base_cost * to_credits(margin_percent) / 100)
                    total = base_cost + margin
                    balance = to_credits(client.credit_balance or 0)
                    new_balance = balance - total

                    if new_balance < 0:
                        logger.warning(
                            f"💸 Insufficient credits for client {client_id}: "
                            f"required {total}, available {balance}"
                        )
                        raise InsufficientCreditsError(client_id, total, balance)

                    client.credit_balance = new_balance
                    transaction = CreditTransaction(
                        client_id=client_id,
                        type=CreditTransactionType.USAGE.value,
                        amount=-total,
                        base_cost=base_cost,
                        margin_amount=margin,
                        balance_after=new_balance,
                        description=request.description or f"{request.source} {request.operation}",
                        data_source=request.source,
                        operation_type=request.operation,
                        job_id=request.job_id,
                        created_at=utcnow()
                    )
                    session.add(transaction)

        logger.debug(
            f"💳 Charged client {client_id} {total} credits "
            f"({request.source}/{request.operation}), balance {new_balance}"
        )
        return transaction

    async def add_credits(
        self,
        client_id: UUID,
        amount: Number,
        type: CreditTransactionType = CreditTransactionType.PURCHASE,
        description: Optional[str] = None
    ) -> Decimal:
        """Credit the balance; returns the new balance"""
        amount = to_credits(amount)
        if amount <= 0:
            raise ValidationError("amount must be positive")

        type = CreditTransactionType(type)
        if type not in self.CREDIT_TYPES:
            raise ValidationError(f"'{type.value}' is not a credit transaction type")

        async with self._lock_for(client_id):
            async with self.session_factory() as session:
                async with session.begin():
                    client = await self._load_client_for_update(session, client_id)
                    new_balance = to_credits(client.credit_balance or 0) + amount
                    client.credit_balance = new_balance
                    session.add(CreditTransaction(
                        client_id=client_id,
                        type=type.value,
                        amount=amount,
                        balance_after=new_balance,
                        description=description or f"Credit {type.value}",
                        created_at=utcnow()
                    ))

        logger.info(f"💰 Added {amount} credits to client {client_id} ({type.value}), balance {new_balance}")
        return new_balance

    async def get_balance(self, client_id: UUID) -> Decimal:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Client.credit_balance).where(Client.id == client_id)
            )
            balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFoundError("Client", client_id)
        return to_credits(balance)

    async def has_balance(self, client_id: UUID, estimated_cost: Number) -> bool:
        return await self.get_balance(client_id) >= to_credits(estimated_cost)

    async def get_transactions(
        self,
        client_id: UUID,
        limit: int = 50,
        offset: int = 0
    ) -> List[CreditTransaction]:
        """Newest first; id breaks timestamp ties so pages never overlap"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(CreditTransaction)
                .where(CreditTransaction.client_id == client_id)
                .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())
