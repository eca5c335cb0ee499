# Overview: Wires the ledger components together for one application instance.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .catalog_service import CatalogService
from .concurrency import KeyedLocks
from .customer_service import CustomerService
from .ledger_store import LedgerStore
from .reconciliation_service import Reconciler
from .refund_service import RefundEngine
from .sales_service import SaleEngine
from .stock_mutator import StockMutator

EXTENSION_KEY = "posledger"


@dataclass
class LedgerServices:
    locks: KeyedLocks
    store: LedgerStore
    mutator: StockMutator
    customers: CustomerService
    catalog: CatalogService
    sales: SaleEngine
    refunds: RefundEngine
    reconciler: Reconciler


def build_services(config) -> LedgerServices:
    """
    Construct one set of components from a config mapping.

    All components of an app share one KeyedLocks instance so that sales,
    refunds and adjustments serialize on the same per-variant locks.
    """
    retry_attempts = int(config.get("WRITE_RETRY_ATTEMPTS", 3))

    locks = KeyedLocks()
    store = LedgerStore(
        default_limit=int(config.get("HISTORY_PAGE_LIMIT", 50)),
        max_limit=int(config.get("HISTORY_PAGE_MAX", 500)),
    )
    mutator = StockMutator(store, locks, retry_attempts=retry_attempts)
    customers = CustomerService()

    return LedgerServices(
        locks=locks,
        store=store,
        mutator=mutator,
        customers=customers,
        catalog=CatalogService(
            mutator,
            default_reorder_point=int(config.get("DEFAULT_REORDER_POINT", 10)),
        ),
        sales=SaleEngine(
            mutator,
            customers,
            tax_rate_bps=int(config.get("TAX_RATE_BPS", 0)),
            payment_methods=config.get("PAYMENT_METHODS", ("cash", "card")),
            default_payment_method=config.get("DEFAULT_PAYMENT_METHOD", "cash"),
            retry_attempts=retry_attempts,
        ),
        refunds=RefundEngine(mutator, customers, retry_attempts=retry_attempts),
        reconciler=Reconciler(store),
    )


def get_services() -> LedgerServices:
    """The LedgerServices registered on the current app."""
    return current_app.extensions[EXTENSION_KEY]
