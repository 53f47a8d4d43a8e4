"""Test helpers for autoexit-monitor test suite"""

from tests.helpers.exit_stubs import (
    FakeConfirmation,
    FakePriceFeed,
    FakeSigner,
    FakeStore,
    FakeSwapClient,
    StaticSessionProvider,
    make_decision,
    make_position,
)

__all__ = [
    "FakeConfirmation",
    "FakePriceFeed",
    "FakeSigner",
    "FakeStore",
    "FakeSwapClient",
    "StaticSessionProvider",
    "make_decision",
    "make_position",
]
