"""Shared fixtures: a fresh in-memory store and service per test."""

import pytest

from whatsapp_parser.service import ParserService
from whatsapp_parser.store import InMemoryOrderBook, InMemoryStore

USER_ID = "user-0001-aaaa"


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def order_book() -> InMemoryOrderBook:
    return InMemoryOrderBook()


@pytest.fixture
def service(store, order_book) -> ParserService:
    return ParserService(store, order_book)


@pytest.fixture
def user_id() -> str:
    return USER_ID
