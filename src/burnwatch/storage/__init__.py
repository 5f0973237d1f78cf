"""Persistence for accounts, the daily spend ledger and notification profiles."""

from .base import StoreTransaction, SyncStore
from .postgres import PostgresStore, PostgresTransaction
