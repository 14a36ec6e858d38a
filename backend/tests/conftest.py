"""
Shared fixtures for ledger tests.

Store-backed tests run against an in-memory SQLite database through
aiosqlite; every test gets a fresh schema.
"""

import uuid
from datetime import date as DateType
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from database.connection import Base, make_session_factory
from database.ledger_models import VendorTransactionDB
from models.enums import VendorTransactionStatus
from models.schemas import (
    VendorTransactionCreate,
    IncomeItemCreate,
    BankTransactionCreate,
    CreditCardCreate,
)
from services.archive_feed import ArchiveFeed
from services.ledger_store import LedgerStore


TODAY = DateType(2025, 3, 1)


class LedgerSeeder:
    """Inserts committed ledger rows for one user."""

    def __init__(self, store: LedgerStore, user_id: str):
        self.store = store
        self.user_id = user_id

    async def card(self, balance: str = "0.00", credit_limit: str = "5000.00"):
        async with self.store.unit_of_work():
            return await self.store.create_credit_card(
                self.user_id,
                CreditCardCreate(account_name="Business Visa", balance=Decimal(balance), credit_limit=Decimal(credit_limit))
            )

    async def payable(
        self,
        amount: str = "1000.00",
        vendor_name: str = "Acme Supplies",
        description: str = "PO-1001",
        due_date: Optional[DateType] = DateType(2025, 3, 10),
        credit_card_id: Optional[str] = None,
        status: VendorTransactionStatus = VendorTransactionStatus.PENDING,
    ) -> VendorTransactionDB:
        async with self.store.unit_of_work():
            return await self.store.create_vendor_transaction(
                self.user_id,
                VendorTransactionCreate(
                    vendor_name=vendor_name,
                    description=description,
                    amount=Decimal(amount),
                    due_date=due_date,
                    credit_card_id=credit_card_id,
                    status=status,
                )
            )

    async def income(
        self,
        amount: str = "500.00",
        source: str = "Globex Corporation",
        description: str = "Invoice 42",
        payment_date: Optional[DateType] = DateType(2025, 3, 5),
    ):
        async with self.store.unit_of_work():
            return await self.store.create_income_item(
                self.user_id,
                IncomeItemCreate(
                    amount=Decimal(amount),
                    source=source,
                    description=description,
                    payment_date=payment_date,
                )
            )

    async def bank(
        self,
        amount: str = "-250.00",
        merchant_name: Optional[str] = "ACME SUPPLIES",
        description: str = "CARD PURCHASE",
        on: DateType = DateType(2025, 3, 12),
    ):
        async with self.store.unit_of_work():
            return await self.store.create_bank_transaction(
                self.user_id,
                BankTransactionCreate(
                    amount=Decimal(amount),
                    merchant_name=merchant_name,
                    description=description,
                    date=on,
                )
            )


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database with the ledger schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def feed():
    """Isolated archive feed so tests never see each other's events."""
    return ArchiveFeed()


@pytest.fixture
def user_id():
    return str(uuid.uuid4())


@pytest.fixture
def store(db, feed):
    return LedgerStore(db, feed)


@pytest.fixture
def seed(store, user_id):
    return LedgerSeeder(store, user_id)
