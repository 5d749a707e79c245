"""Tests for the in-memory asset rail — proves moves are exact and refusals roll back."""

import pytest

from handlepay.addresses import NATIVE_ASSET, new_address
from handlepay.assets import AssetBook, AssetRail, check_attached_value, collect, deliver
from handlepay.errors import AmountMismatch, InvalidAmount, TransferFailed
from handlepay.runtime import Runtime


TOKEN = new_address()


def _book() -> AssetBook:
    return AssetBook(Runtime())


class TestNativeTransfers:
    def test_book_is_an_asset_rail(self) -> None:
        assert isinstance(_book(), AssetRail)

    def test_send_value_moves_funds(self) -> None:
        book = _book()
        alice, bob = new_address(), new_address()
        book.mint(NATIVE_ASSET, alice, 100)
        assert book.send_value(alice, bob, 40) is True
        assert book.balance_of(NATIVE_ASSET, alice) == 60
        assert book.balance_of(NATIVE_ASSET, bob) == 40

    def test_send_value_insufficient_returns_false(self) -> None:
        book = _book()
        alice, bob = new_address(), new_address()
        book.mint(NATIVE_ASSET, alice, 10)
        assert book.send_value(alice, bob, 11) is False
        assert book.balance_of(NATIVE_ASSET, alice) == 10
        assert book.balance_of(NATIVE_ASSET, bob) == 0

    def test_refusing_hook_reverts_the_move(self) -> None:
        book = _book()
        alice, bob = new_address(), new_address()
        book.mint(NATIVE_ASSET, alice, 10)
        book.set_receive_hook(bob, lambda asset, sender, amount: False)
        assert book.send_value(alice, bob, 5) is False
        assert book.balance_of(NATIVE_ASSET, alice) == 10
        assert book.balance_of(NATIVE_ASSET, bob) == 0

    def test_hook_sees_sender_and_amount(self) -> None:
        book = _book()
        alice, bob = new_address(), new_address()
        seen = []
        book.mint(NATIVE_ASSET, alice, 10)
        book.set_receive_hook(bob, lambda asset, sender, amount: seen.append((asset, sender, amount)))
        assert book.send_value(alice, bob, 3)
        assert seen == [(NATIVE_ASSET, alice, 3)]

    def test_cleared_hook_no_longer_runs(self) -> None:
        book = _book()
        alice, bob = new_address(), new_address()
        book.mint(NATIVE_ASSET, alice, 10)
        book.set_receive_hook(bob, lambda asset, sender, amount: False)
        book.set_receive_hook(bob, None)
        assert book.send_value(alice, bob, 5)

    def test_non_protocol_hook_error_propagates(self) -> None:
        book = _book()
        alice, bob = new_address(), new_address()
        book.mint(NATIVE_ASSET, alice, 10)

        def hook(asset: str, sender: str, amount: int) -> bool:
            raise RuntimeError("hook bug")

        book.set_receive_hook(bob, hook)
        with pytest.raises(RuntimeError, match="hook bug"):
            book.send_value(alice, bob, 5)
        assert book.balance_of(NATIVE_ASSET, alice) == 10


class TestTokenTransfers:
    def test_pull_from_consumes_allowance(self) -> None:
        book = _book()
        alice, vault = new_address(), new_address()
        book.mint(TOKEN, alice, 100)
        book.approve(TOKEN, alice, vault, 60)
        book.pull_from(TOKEN, alice, vault, 50)
        assert book.balance_of(TOKEN, vault) == 50
        assert book.allowance(TOKEN, alice, vault) == 10

    def test_pull_from_without_allowance_raises(self) -> None:
        book = _book()
        alice, vault = new_address(), new_address()
        book.mint(TOKEN, alice, 100)
        with pytest.raises(TransferFailed, match="allowance"):
            book.pull_from(TOKEN, alice, vault, 1)

    def test_push_to_insufficient_raises(self) -> None:
        book = _book()
        alice, bob = new_address(), new_address()
        with pytest.raises(TransferFailed, match="Insufficient balance"):
            book.push_to(TOKEN, alice, bob, 1)

    def test_refused_push_restores_allowance_and_balances(self) -> None:
        book = _book()
        alice, vault = new_address(), new_address()
        book.mint(TOKEN, alice, 100)
        book.approve(TOKEN, alice, vault, 100)
        book.set_receive_hook(vault, lambda asset, sender, amount: False)
        with pytest.raises(TransferFailed):
            book.pull_from(TOKEN, alice, vault, 100)
        assert book.allowance(TOKEN, alice, vault) == 100
        assert book.balance_of(TOKEN, alice) == 100

    def test_native_has_no_allowances(self) -> None:
        book = _book()
        with pytest.raises(TransferFailed):
            book.approve(NATIVE_ASSET, new_address(), new_address(), 1)

    def test_token_ops_reject_native(self) -> None:
        book = _book()
        with pytest.raises(TransferFailed):
            book.push_to(NATIVE_ASSET, new_address(), new_address(), 1)

    def test_negative_allowance_rejected(self) -> None:
        with pytest.raises(InvalidAmount):
            _book().approve(TOKEN, new_address(), new_address(), -1)


class TestHelpers:
    def test_collect_native_failure_raises(self) -> None:
        book = _book()
        with pytest.raises(TransferFailed, match="collect"):
            collect(book, NATIVE_ASSET, new_address(), new_address(), 1)

    def test_deliver_token(self) -> None:
        book = _book()
        vault, bob = new_address(), new_address()
        book.mint(TOKEN, vault, 5)
        deliver(book, TOKEN, vault, bob, 5)
        assert book.balance_of(TOKEN, bob) == 5

    def test_attached_value_must_match_native_total(self) -> None:
        check_attached_value(NATIVE_ASSET, 10, 10)
        with pytest.raises(AmountMismatch):
            check_attached_value(NATIVE_ASSET, 10, 9)
        with pytest.raises(AmountMismatch):
            check_attached_value(NATIVE_ASSET, 10, None)

    def test_token_batch_must_not_attach_value(self) -> None:
        check_attached_value(TOKEN, 10, None)
        check_attached_value(TOKEN, 10, 0)
        with pytest.raises(AmountMismatch):
            check_attached_value(TOKEN, 10, 10)


class TestPersistence:
    def test_round_trip(self) -> None:
        book = _book()
        alice, vault = new_address(), new_address()
        book.mint(NATIVE_ASSET, alice, 7)
        book.mint(TOKEN, alice, 9)
        book.approve(TOKEN, alice, vault, 4)
        restored = AssetBook.from_dict(book.to_dict(), Runtime())
        assert restored.balance_of(NATIVE_ASSET, alice) == 7
        assert restored.balance_of(TOKEN, alice) == 9
        assert restored.allowance(TOKEN, alice, vault) == 4
        assert restored.total_supply(TOKEN) == 9

    def test_assets_lists_funded_assets(self) -> None:
        book = _book()
        book.mint(TOKEN, new_address(), 1)
        assert book.assets() == [TOKEN]
