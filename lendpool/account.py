"""
account.py - Fixed-slot balance sheets

Each account holds exactly MAX_BALANCES slots. A slot is either empty (None)
or a Balance on one bank. No two slots reference the same bank, and a
balance whose asset and liability shares both reach zero is removed so its
slot can be reused.

A Balance is on one side only: asset shares or liability shares, never both.
The plain operations (deposit, withdraw, borrow, repay) refuse to cross
sides; the liquidation variants net across them, spending assets before
taking on debt and repaying debt before adding assets.

Functions in the second half combine an account and its bank, since every
balance change is a share change on both.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import List, Optional, Tuple

from .bank import (
    Bank,
    adjust_shares,
    record_borrow, record_deposit, record_repay, record_repay_shares,
    record_withdraw, record_withdraw_shares,
)
from .core import (
    FIXED_POINT_PLACES, MAX_BALANCES, ZERO,
    BalanceSlotsFull, IllegalBalanceState, check_fixed, to_decimal,
)
from .shares import (
    asset_amount, asset_shares_for_deposit, asset_shares_for_withdraw,
    liability_amount, liability_shares_for_borrow, liability_shares_for_repay,
)


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Balance:
    """Shares held by one account in one bank."""
    bank_id: str
    asset_shares: Decimal = ZERO
    liability_shares: Decimal = ZERO

    def __post_init__(self):
        if not isinstance(self.asset_shares, Decimal):
            object.__setattr__(self, 'asset_shares', to_decimal(self.asset_shares))
        if not isinstance(self.liability_shares, Decimal):
            object.__setattr__(self, 'liability_shares', to_decimal(self.liability_shares))
        if self.asset_shares < 0 or self.liability_shares < 0:
            raise ValueError(
                f"shares must be non-negative, got asset={self.asset_shares}, "
                f"liability={self.liability_shares}"
            )
        if self.asset_shares > 0 and self.liability_shares > 0:
            raise ValueError(f"balance on {self.bank_id} cannot hold both assets and liabilities")

    @property
    def is_empty(self) -> bool:
        return self.asset_shares == 0 and self.liability_shares == 0

    @property
    def is_liability(self) -> bool:
        return self.liability_shares > 0


@dataclass(frozen=True, slots=True)
class Account:
    """
    A balance sheet inside one group.

    balances always has MAX_BALANCES entries; None marks an empty slot.
    """
    account_id: str
    group: str
    balances: Tuple[Optional[Balance], ...] = (None,) * MAX_BALANCES
    disabled: bool = False

    def __post_init__(self):
        if not self.account_id or not self.account_id.strip():
            raise ValueError("account_id cannot be empty")
        if not isinstance(self.balances, tuple):
            object.__setattr__(self, 'balances', tuple(self.balances))
        if len(self.balances) != MAX_BALANCES:
            raise ValueError(f"account must have {MAX_BALANCES} slots, got {len(self.balances)}")
        bank_ids = [b.bank_id for b in self.balances if b is not None]
        if len(bank_ids) != len(set(bank_ids)):
            raise ValueError(f"account {self.account_id} has duplicate bank balances")

    def __repr__(self) -> str:
        active = ", ".join(
            f"{b.bank_id}:{'-' + str(b.liability_shares) if b.is_liability else b.asset_shares}"
            for b in self.balances if b is not None
        )
        flag = ", disabled" if self.disabled else ""
        return f"Account({self.account_id} in {self.group}{flag}: [{active}])"


def create_account(account_id: str, group: str) -> Account:
    return Account(account_id=account_id, group=group)


# ============================================================================
# SLOT MANAGEMENT
# ============================================================================

def active_balances(account: Account) -> List[Balance]:
    """Non-empty slots in slot order."""
    return [b for b in account.balances if b is not None]


def active_bank_ids(account: Account) -> List[str]:
    return [b.bank_id for b in account.balances if b is not None]


def find_balance(account: Account, bank_id: str) -> Optional[Balance]:
    for balance in account.balances:
        if balance is not None and balance.bank_id == bank_id:
            return balance
    return None


def set_balance(account: Account, balance: Balance) -> Account:
    """
    Write a balance into the account.

    Replaces the slot already holding balance.bank_id, otherwise takes the
    first empty slot. An empty balance clears its slot.

    Raises:
        BalanceSlotsFull: If a new bank needs a slot and all are in use.
    """
    slots = list(account.balances)
    for i, existing in enumerate(slots):
        if existing is not None and existing.bank_id == balance.bank_id:
            slots[i] = None if balance.is_empty else balance
            return replace(account, balances=tuple(slots))

    if balance.is_empty:
        return account

    for i, existing in enumerate(slots):
        if existing is None:
            slots[i] = balance
            return replace(account, balances=tuple(slots))

    raise BalanceSlotsFull(
        f"account {account.account_id} already holds {MAX_BALANCES} balances; "
        f"cannot open one on {balance.bank_id}"
    )


def _current(account: Account, bank_id: str) -> Balance:
    return find_balance(account, bank_id) or Balance(bank_id)


def _with_shares(account: Account, bank_id: str, asset_shares: Decimal,
                 liability_shares: Decimal) -> Account:
    check_fixed(asset_shares, "asset shares")
    check_fixed(liability_shares, "liability shares")
    return set_balance(account, Balance(bank_id, asset_shares, liability_shares))


# ============================================================================
# BALANCE AMOUNTS
# ============================================================================

def balance_asset_amount(account: Account, bank: Bank,
                         places: int = FIXED_POINT_PLACES) -> Decimal:
    """Tokens the account could withdraw from bank (rounded down)."""
    balance = find_balance(account, bank.bank_id)
    if balance is None:
        return ZERO
    return asset_amount(balance.asset_shares, bank.state.deposit_index, places)


def balance_liability_amount(account: Account, bank: Bank,
                             places: int = FIXED_POINT_PLACES) -> Decimal:
    """Tokens the account owes to bank (rounded up)."""
    balance = find_balance(account, bank.bank_id)
    if balance is None:
        return ZERO
    return liability_amount(balance.liability_shares, bank.state.borrow_index, places)


# ============================================================================
# TOKEN-MOVING OPERATIONS
# ============================================================================

def deposit(account: Account, bank: Bank, amount: Decimal,
            places: int = FIXED_POINT_PLACES) -> Tuple[Account, Bank, Decimal]:
    """
    Add `amount` tokens of assets.

    Returns:
        (account, bank, asset shares minted)

    Raises:
        IllegalBalanceState: If the account owes this bank (repay instead).
    """
    current = _current(account, bank.bank_id)
    if current.is_liability:
        raise IllegalBalanceState(
            f"account {account.account_id} has a liability on {bank.bank_id}; repay it first"
        )
    new_bank, shares = record_deposit(bank, amount, places)
    new_account = _with_shares(account, bank.bank_id, current.asset_shares + shares, ZERO)
    return new_account, new_bank, shares


def withdraw(account: Account, bank: Bank, amount: Optional[Decimal],
             places: int = FIXED_POINT_PLACES) -> Tuple[Account, Bank, Decimal, Decimal]:
    """
    Remove assets; amount None withdraws everything.

    Returns:
        (account, bank, tokens paid out, asset shares burned)

    Raises:
        IllegalBalanceState: If the account has fewer shares than required.
    """
    current = _current(account, bank.bank_id)
    if current.asset_shares == 0:
        raise IllegalBalanceState(
            f"account {account.account_id} has no assets in {bank.bank_id}"
        )
    if amount is None:
        shares = current.asset_shares
        new_bank, paid = record_withdraw_shares(bank, shares, places)
    else:
        needed = asset_shares_for_withdraw(amount, bank.state.deposit_index, places)
        if needed > current.asset_shares:
            raise IllegalBalanceState(
                f"account {account.account_id} cannot withdraw {amount} from {bank.bank_id}: "
                f"holds {asset_amount(current.asset_shares, bank.state.deposit_index, places)}"
            )
        new_bank, shares = record_withdraw(bank, amount, places)
        paid = amount
    new_account = _with_shares(account, bank.bank_id, current.asset_shares - shares, ZERO)
    return new_account, new_bank, paid, shares


def borrow(account: Account, bank: Bank, amount: Decimal,
           places: int = FIXED_POINT_PLACES) -> Tuple[Account, Bank, Decimal]:
    """
    Take on `amount` tokens of debt.

    Returns:
        (account, bank, liability shares minted)

    Raises:
        IllegalBalanceState: If the account has assets in this bank (withdraw instead).
    """
    current = _current(account, bank.bank_id)
    if current.asset_shares > 0:
        raise IllegalBalanceState(
            f"account {account.account_id} has assets in {bank.bank_id}; withdraw them first"
        )
    new_bank, shares = record_borrow(bank, amount, places)
    new_account = _with_shares(account, bank.bank_id, ZERO, current.liability_shares + shares)
    return new_account, new_bank, shares


def repay(account: Account, bank: Bank, amount: Optional[Decimal],
          places: int = FIXED_POINT_PLACES) -> Tuple[Account, Bank, Decimal, Decimal]:
    """
    Pay down debt; amount None repays everything.

    Returns:
        (account, bank, tokens collected, liability shares burned)

    Raises:
        IllegalBalanceState: If the account owes less than `amount`.
    """
    current = _current(account, bank.bank_id)
    if current.liability_shares == 0:
        raise IllegalBalanceState(
            f"account {account.account_id} owes nothing to {bank.bank_id}"
        )
    if amount is None:
        shares = current.liability_shares
        new_bank, collected = record_repay_shares(bank, shares, places)
    else:
        owed = liability_amount(current.liability_shares, bank.state.borrow_index, places)
        if amount > owed:
            raise IllegalBalanceState(
                f"account {account.account_id} owes {owed} to {bank.bank_id}, "
                f"cannot repay {amount}"
            )
        new_bank, shares = record_repay(bank, amount, places)
        collected = amount
    new_account = _with_shares(account, bank.bank_id, ZERO, current.liability_shares - shares)
    return new_account, new_bank, collected, shares


# ============================================================================
# IN-PLACE TRANSFERS (no tokens enter or leave the vault)
# ============================================================================

# Share totals move but the vault does not, so utilization checks are
# skipped: a transfer works even when the bank is fully borrowed.

def increase_balance(account: Account, bank: Bank, amount: Decimal,
                     places: int = FIXED_POINT_PLACES) -> Tuple[Account, Bank]:
    """
    Credit `amount` tokens to the account inside the bank.

    Debt on the bank is repaid first; any remainder becomes assets. Caps and
    operational state are not consulted: nothing new enters the pool.
    """
    current = _current(account, bank.bank_id)
    index = bank.state.borrow_index
    liability_shares = current.liability_shares
    borrow_delta = ZERO

    if liability_shares > 0:
        owed = liability_amount(liability_shares, index, places)
        if amount < owed:
            burned = min(liability_shares_for_repay(amount, index, places), liability_shares)
            new_account = _with_shares(account, bank.bank_id, ZERO, liability_shares - burned)
            new_bank = adjust_shares(bank, borrow_shares=-burned, places=places,
                                     check_utilization=False)
            return new_account, new_bank
        borrow_delta = -liability_shares
        amount = amount - owed
        liability_shares = ZERO

    minted = asset_shares_for_deposit(amount, bank.state.deposit_index, places) if amount > 0 else ZERO
    new_account = _with_shares(account, bank.bank_id, current.asset_shares + minted, liability_shares)
    new_bank = adjust_shares(bank, deposit_shares=minted, borrow_shares=borrow_delta,
                             places=places, check_utilization=False)
    return new_account, new_bank


def decrease_balance(account: Account, bank: Bank, amount: Decimal,
                     places: int = FIXED_POINT_PLACES) -> Tuple[Account, Bank]:
    """
    Debit `amount` tokens from the account inside the bank.

    Assets are spent first; any remainder becomes debt.
    """
    current = _current(account, bank.bank_id)
    index = bank.state.deposit_index
    asset_shares = current.asset_shares
    deposit_delta = ZERO

    if asset_shares > 0:
        held = asset_amount(asset_shares, index, places)
        if amount <= held:
            burned = min(asset_shares_for_withdraw(amount, index, places), asset_shares)
            new_account = _with_shares(account, bank.bank_id, asset_shares - burned, ZERO)
            new_bank = adjust_shares(bank, deposit_shares=-burned, places=places,
                                     check_utilization=False)
            return new_account, new_bank
        deposit_delta = -asset_shares
        amount = amount - held
        asset_shares = ZERO

    minted = liability_shares_for_borrow(amount, bank.state.borrow_index, places)
    new_account = _with_shares(account, bank.bank_id, asset_shares,
                               current.liability_shares + minted)
    new_bank = adjust_shares(bank, deposit_shares=deposit_delta, borrow_shares=minted,
                             places=places, check_utilization=False)
    return new_account, new_bank


def remove_asset(account: Account, bank: Bank, amount: Decimal,
                 places: int = FIXED_POINT_PLACES) -> Tuple[Account, Bank]:
    """
    Take `amount` tokens of the account's assets without creating debt.

    Raises:
        IllegalBalanceState: If the account holds less than `amount`.
    """
    current = _current(account, bank.bank_id)
    held = asset_amount(current.asset_shares, bank.state.deposit_index, places)
    if amount > held:
        raise IllegalBalanceState(
            f"account {account.account_id} holds {held} in {bank.bank_id}, cannot remove {amount}"
        )
    return decrease_balance(account, bank, amount, places)


def write_off_liability(account: Account, bank: Bank,
                        places: int = FIXED_POINT_PLACES) -> Tuple[Account, Bank, Decimal]:
    """
    Remove the account's whole debt on bank from the books.

    Returns:
        (account, bank, amount written off)
    """
    current = _current(account, bank.bank_id)
    if current.liability_shares == 0:
        raise IllegalBalanceState(
            f"account {account.account_id} owes nothing to {bank.bank_id}"
        )
    owed = liability_amount(current.liability_shares, bank.state.borrow_index, places)
    new_bank = adjust_shares(bank, borrow_shares=-current.liability_shares, places=places)
    new_account = _with_shares(account, bank.bank_id, ZERO, ZERO)
    return new_account, new_bank, owed
