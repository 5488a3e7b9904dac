"""
test_account.py - Unit tests for fixed-slot balance sheets

Tests:
- Balance and Account validation
- Slot allocation, reuse and the 16-slot limit
- deposit/withdraw/borrow/repay side rules
- In-place transfers used by liquidation and bankruptcy
"""

import pytest
from decimal import Decimal

from lendpool import (
    Account,
    Balance,
    BalanceSlotsFull,
    IllegalBalanceState,
    MAX_BALANCES,
    active_balances,
    create_account,
    find_balance,
)
from lendpool.account import (
    balance_asset_amount,
    balance_liability_amount,
    borrow,
    decrease_balance,
    deposit,
    increase_balance,
    remove_asset,
    repay,
    set_balance,
    withdraw,
    write_off_liability,
)
from lendpool.bank import record_deposit
from tests.fake_oracle import make_bank


def liquid_bank(bank_id="usdc", amount="10000"):
    """Bank with outside liquidity so borrows can be paid out."""
    bank, _ = record_deposit(make_bank(bank_id), Decimal(amount))
    return bank


# ============================================================================
# VALIDATION
# ============================================================================

class TestBalance:

    def test_one_side_only(self):
        with pytest.raises(ValueError):
            Balance("usdc", Decimal("1"), Decimal("1"))

    def test_negative_shares_rejected(self):
        with pytest.raises(ValueError):
            Balance("usdc", Decimal("-1"))

    def test_flags(self):
        assert Balance("usdc").is_empty
        assert Balance("usdc", liability_shares=Decimal("2")).is_liability
        assert not Balance("usdc", asset_shares=Decimal("2")).is_liability


class TestAccount:

    def test_new_account_has_sixteen_empty_slots(self):
        account = create_account("alice", "core")
        assert len(account.balances) == MAX_BALANCES == 16
        assert active_balances(account) == []
        assert not account.disabled

    def test_wrong_slot_count_rejected(self):
        with pytest.raises(ValueError):
            Account("alice", "core", (None,) * 15)

    def test_duplicate_bank_rejected(self):
        slots = [Balance("usdc", Decimal("1")), Balance("usdc", Decimal("2"))] + [None] * 14
        with pytest.raises(ValueError, match="duplicate"):
            Account("alice", "core", tuple(slots))

    def test_repr_lists_balances(self):
        account = set_balance(create_account("alice", "core"), Balance("usdc", Decimal("5")))
        assert "usdc:5" in repr(account)


# ============================================================================
# SLOTS
# ============================================================================

class TestSlots:
    """Slot allocation rules."""

    def test_first_empty_slot_is_used(self):
        account = set_balance(create_account("a", "core"), Balance("usdc", Decimal("1")))
        account = set_balance(account, Balance("sol", Decimal("1")))
        assert account.balances[0].bank_id == "usdc"
        assert account.balances[1].bank_id == "sol"

    def test_existing_slot_is_replaced_in_place(self):
        account = set_balance(create_account("a", "core"), Balance("usdc", Decimal("1")))
        account = set_balance(account, Balance("sol", Decimal("1")))
        account = set_balance(account, Balance("usdc", Decimal("7")))
        assert account.balances[0] == Balance("usdc", Decimal("7"))

    def test_empty_balance_frees_slot_for_reuse(self):
        account = set_balance(create_account("a", "core"), Balance("usdc", Decimal("1")))
        account = set_balance(account, Balance("sol", Decimal("1")))
        account = set_balance(account, Balance("usdc"))
        assert account.balances[0] is None
        account = set_balance(account, Balance("eth", Decimal("1")))
        assert account.balances[0].bank_id == "eth"

    def test_clearing_an_absent_bank_is_noop(self):
        account = create_account("a", "core")
        assert set_balance(account, Balance("usdc")) is account

    def test_seventeenth_bank_rejected(self):
        account = create_account("a", "core")
        for i in range(MAX_BALANCES):
            account = set_balance(account, Balance(f"bank{i}", Decimal("1")))
        with pytest.raises(BalanceSlotsFull):
            set_balance(account, Balance("bank16", Decimal("1")))

    def test_full_account_can_still_update_existing(self):
        account = create_account("a", "core")
        for i in range(MAX_BALANCES):
            account = set_balance(account, Balance(f"bank{i}", Decimal("1")))
        account = set_balance(account, Balance("bank3", Decimal("9")))
        assert find_balance(account, "bank3").asset_shares == Decimal("9")


# ============================================================================
# TOKEN-MOVING OPERATIONS
# ============================================================================

class TestDepositWithdraw:

    def test_deposit_then_partial_withdraw(self):
        account, bank, shares = deposit(create_account("a", "core"), make_bank("usdc"), Decimal("100"))
        assert shares == Decimal("100")
        account, bank, paid, burned = withdraw(account, bank, Decimal("40"))
        assert (paid, burned) == (Decimal("40"), Decimal("40"))
        assert balance_asset_amount(account, bank) == Decimal("60")

    def test_withdraw_all_clears_slot(self):
        account, bank, _ = deposit(create_account("a", "core"), make_bank("usdc"), Decimal("100"))
        account, bank, paid, _ = withdraw(account, bank, None)
        assert paid == Decimal("100")
        assert find_balance(account, "usdc") is None
        assert bank.state.total_deposit_shares == 0

    def test_withdraw_more_than_held(self):
        account, bank, _ = deposit(create_account("a", "core"), make_bank("usdc"), Decimal("100"))
        with pytest.raises(IllegalBalanceState):
            withdraw(account, bank, Decimal("100.000000000000000001"))

    def test_withdraw_without_assets(self):
        with pytest.raises(IllegalBalanceState):
            withdraw(create_account("a", "core"), liquid_bank(), Decimal("1"))

    def test_deposit_onto_liability_rejected(self):
        account, bank, _ = borrow(create_account("a", "core"), liquid_bank(), Decimal("10"))
        with pytest.raises(IllegalBalanceState):
            deposit(account, bank, Decimal("5"))


class TestBorrowRepay:

    def test_borrow_then_partial_repay(self):
        account, bank, shares = borrow(create_account("a", "core"), liquid_bank(), Decimal("100"))
        assert shares == Decimal("100")
        account, bank, collected, burned = repay(account, bank, Decimal("30"))
        assert (collected, burned) == (Decimal("30"), Decimal("30"))
        assert balance_liability_amount(account, bank) == Decimal("70")

    def test_repay_all_clears_slot(self):
        account, bank, _ = borrow(create_account("a", "core"), liquid_bank(), Decimal("100"))
        account, bank, collected, _ = repay(account, bank, None)
        assert collected == Decimal("100")
        assert find_balance(account, "usdc") is None
        assert bank.state.total_borrow_shares == 0

    def test_repay_more_than_owed(self):
        account, bank, _ = borrow(create_account("a", "core"), liquid_bank(), Decimal("100"))
        with pytest.raises(IllegalBalanceState):
            repay(account, bank, Decimal("101"))

    def test_repay_without_debt(self):
        with pytest.raises(IllegalBalanceState):
            repay(create_account("a", "core"), liquid_bank(), Decimal("1"))

    def test_borrow_against_own_deposit_rejected(self):
        account, bank, _ = deposit(create_account("a", "core"), liquid_bank(), Decimal("100"))
        with pytest.raises(IllegalBalanceState):
            borrow(account, bank, Decimal("5"))


# ============================================================================
# IN-PLACE TRANSFERS
# ============================================================================

class TestTransfers:
    """Netting transfers that move no tokens through the vault."""

    def test_increase_repays_debt_then_adds_assets(self):
        account, bank, _ = borrow(create_account("a", "core"), liquid_bank(), Decimal("100"))
        vault = bank.state.liquidity_vault
        account, bank = increase_balance(account, bank, Decimal("150"))
        assert balance_liability_amount(account, bank) == 0
        assert balance_asset_amount(account, bank) == Decimal("50")
        assert bank.state.total_borrow_shares == 0
        assert bank.state.liquidity_vault == vault

    def test_increase_partial_repay(self):
        account, bank, _ = borrow(create_account("a", "core"), liquid_bank(), Decimal("100"))
        account, bank = increase_balance(account, bank, Decimal("40"))
        assert balance_liability_amount(account, bank) == Decimal("60")

    def test_decrease_spends_assets_then_borrows(self):
        account, bank, _ = deposit(create_account("a", "core"), liquid_bank(), Decimal("100"))
        account, bank = decrease_balance(account, bank, Decimal("130"))
        assert balance_asset_amount(account, bank) == 0
        assert balance_liability_amount(account, bank) == Decimal("30")

    def test_decrease_within_assets(self):
        account, bank, _ = deposit(create_account("a", "core"), liquid_bank(), Decimal("100"))
        account, bank = decrease_balance(account, bank, Decimal("100"))
        assert find_balance(account, "usdc") is None

    def test_remove_asset_never_borrows(self):
        account, bank, _ = deposit(create_account("a", "core"), liquid_bank(), Decimal("100"))
        with pytest.raises(IllegalBalanceState):
            remove_asset(account, bank, Decimal("100.5"))

    def test_write_off_liability(self):
        account, bank, _ = borrow(create_account("a", "core"), liquid_bank(), Decimal("100"))
        account, bank, owed = write_off_liability(account, bank)
        assert owed == Decimal("100")
        assert find_balance(account, "usdc") is None
        assert bank.state.total_borrow_shares == 0

    def test_write_off_without_debt(self):
        with pytest.raises(IllegalBalanceState):
            write_off_liability(create_account("a", "core"), liquid_bank())
