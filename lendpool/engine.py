"""
engine.py - The stateful lending engine

LendingEngine is the only mutable object in the package. It owns the group,
bank and account registries, a logical clock, and the operation log. Every
entry point follows the same path:

    1. Resolve references (InvalidBank / InvalidAccount)
    2. Accrue every bank the operation values or writes
    3. Build new frozen Bank/Account values on a staging area
    4. Run every check (caps, liquidity, health, liquidation post-checks)
    5. Commit the staged values in one step and append an OperationRecord

Any LendingError raised in steps 1-4 rejects the operation: the staging area
is dropped and the engine is exactly as it was. The caller gets an
OperationResult either way. Exceptions that are not LendingErrors are bugs
and propagate.

The engine performs no locking. declare_access() reports which banks and
accounts an operation will touch so the caller can serialize operations
that overlap.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Set, Tuple

from . import account as accounts
from .account import (
    Account, active_bank_ids, balance_asset_amount, balance_liability_amount,
    create_account, find_balance,
)
from .bank import (
    Bank, BankConfig,
    accrue as accrue_bank, collect_fees as collect_bank_fees, cover_bad_debt,
    create_bank, credit_insurance, require_not_paused,
)
from .core import (
    AccountDisabled, AccountNotBankrupt, EngineConfig, IllegalBalanceState,
    IllegalLiquidation, InsufficientCollateral, InvalidAccount, InvalidAmount,
    InvalidBank, LendingError, OperationStatus, RequirementType,
    validate_amount,
)
from .liquidation import (
    calculate_liquidation_plan, check_liquidation_eligibility, check_liquidation_outcome,
)
from .oracle import PriceOracle, PriceQuote, fetch_checked_quote
from .risk import HealthReport, calculate_health, check_initial_health, is_bankrupt


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccessSet:
    """
    Entities an operation touches.

    Accrual writes a bank's indices, so every bank an operation values is
    also in banks_written.
    """
    banks_read: FrozenSet[str] = frozenset()
    banks_written: FrozenSet[str] = frozenset()
    accounts_read: FrozenSet[str] = frozenset()
    accounts_written: FrozenSet[str] = frozenset()

    def conflicts_with(self, other: 'AccessSet') -> bool:
        """True when the two operations must not run concurrently."""
        if self.banks_written & (other.banks_read | other.banks_written):
            return True
        if other.banks_written & self.banks_read:
            return True
        if self.accounts_written & (other.accounts_read | other.accounts_written):
            return True
        return bool(other.accounts_written & self.accounts_read)


@dataclass(frozen=True, slots=True)
class OperationResult:
    """
    Tagged outcome of an entry point.

    details holds operation-specific figures (amounts, shares, health
    factors) for APPLIED results and is empty for REJECTED ones.
    """
    operation: str
    status: OperationStatus
    access: AccessSet
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[LendingError] = None

    @property
    def applied(self) -> bool:
        return self.status == OperationStatus.APPLIED

    def raise_for_error(self) -> 'OperationResult':
        """Re-raise the rejection error, or return self if applied."""
        if self.error is not None:
            raise self.error
        return self

    def __repr__(self) -> str:
        if self.error is not None:
            return f"OperationResult({self.operation}: REJECTED {type(self.error).__name__}: {self.error})"
        return f"OperationResult({self.operation}: APPLIED {self.details})"


@dataclass(frozen=True, slots=True)
class OperationRecord:
    """Audit record of one applied operation."""
    sequence: int
    operation: str
    timestamp: datetime
    params: Tuple[Tuple[str, Any], ...]
    details: Tuple[Tuple[str, Any], ...]

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v}" for k, v in self.params)
        return f"#{self.sequence:06d} {self.timestamp.isoformat()} {self.operation}({params})"


# ============================================================================
# STAGING
# ============================================================================

class _Staging:
    """Copy-on-write view of the registries for one operation."""

    def __init__(self, engine: 'LendingEngine'):
        self._engine = engine
        self.banks: Dict[str, Bank] = {}
        self.accounts: Dict[str, Account] = {}

    def bank(self, bank_id: str) -> Bank:
        if bank_id in self.banks:
            return self.banks[bank_id]
        try:
            return self._engine.banks[bank_id]
        except KeyError:
            raise InvalidBank(f"unknown bank: {bank_id}") from None

    def account(self, account_id: str) -> Account:
        if account_id in self.accounts:
            return self.accounts[account_id]
        try:
            return self._engine.accounts[account_id]
        except KeyError:
            raise InvalidAccount(f"unknown account: {account_id}") from None

    def put_bank(self, bank: Bank) -> None:
        self.banks[bank.bank_id] = bank

    def put_account(self, account: Account) -> None:
        self.accounts[account.account_id] = account


# ============================================================================
# ENGINE
# ============================================================================

class LendingEngine:
    """
    Risk and solvency engine for one deployment of the lending pool.

    Example:
        oracle = StaticPriceOracle()
        engine = LendingEngine("main", oracle, verbose=False)
        engine.register_group("core")
        engine.add_bank("usdc", "core", usdc_config)
        engine.open_account("alice", "core")
        result = engine.deposit("alice", "usdc", Decimal("100"))
    """

    def __init__(
        self,
        name: str,
        oracle: PriceOracle,
        config: Optional[EngineConfig] = None,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create an engine.

        Args:
            name: Engine identifier used in log output
            oracle: Price feed used for every valuation
            config: Policy parameters (default: EngineConfig())
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print one line per operation outcome (default: True)
        """
        self.name = name
        self.oracle = oracle
        self.config = config or EngineConfig()
        self.verbose = verbose
        self.groups: Set[str] = set()
        self.banks: Dict[str, Bank] = {}
        self.accounts: Dict[str, Account] = {}
        self.operation_log: List[OperationRecord] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._next_sequence: int = 0

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the engine."""
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the logical clock forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION AND CONFIGURATION (administrative, raises on misuse)
    # ========================================================================

    def register_group(self, group: str) -> str:
        if not group or not group.strip():
            raise ValueError("group cannot be empty")
        if group in self.groups:
            raise ValueError(f"group already registered: {group}")
        self.groups.add(group)
        if self.verbose:
            print(f"📝 Registered group: {group}")
        return group

    def add_bank(self, bank_id: str, group: str, config: BankConfig) -> Bank:
        """Create a bank in `group` with fresh indices at the current time."""
        if group not in self.groups:
            raise ValueError(f"group not registered: {group}")
        if bank_id in self.banks:
            raise ValueError(f"bank already exists: {bank_id}")
        bank = create_bank(bank_id, group, config, self._current_time)
        self.banks[bank_id] = bank
        if self.verbose:
            print(f"📝 Registered bank: {bank_id} ({config.asset_id}) in {group}")
        return bank

    def configure_bank(self, bank_id: str, **changes: Any) -> Bank:
        """
        Replace fields of a bank's config.

        Interest up to now accrues under the old parameters first. The new
        config is validated by BankConfig itself.

        Raises:
            InvalidBank: If the bank does not exist.
            ValueError: If the resulting config is invalid.
        """
        bank = self.get_bank(bank_id)
        bank, _ = accrue_bank(bank, self._current_time, self.config)
        bank = replace(bank, config=replace(bank.config, **changes))
        self.banks[bank_id] = bank
        if self.verbose:
            print(f"📝 Configured bank: {bank_id} {sorted(changes)}")
        return bank

    def open_account(self, account_id: str, group: str) -> Account:
        if group not in self.groups:
            raise ValueError(f"group not registered: {group}")
        if account_id in self.accounts:
            raise ValueError(f"account already exists: {account_id}")
        account = create_account(account_id, group)
        self.accounts[account_id] = account
        return account

    def close_account(self, account_id: str) -> None:
        """Remove an account; it must hold no balances."""
        account = self.get_account(account_id)
        if active_bank_ids(account):
            raise ValueError(f"account {account_id} still holds balances")
        del self.accounts[account_id]

    def set_account_disabled(self, account_id: str, disabled: bool = True) -> Account:
        account = replace(self.get_account(account_id), disabled=disabled)
        self.accounts[account_id] = account
        return account

    # ========================================================================
    # READ-ONLY QUERIES
    # ========================================================================

    def get_bank(self, bank_id: str) -> Bank:
        try:
            return self.banks[bank_id]
        except KeyError:
            raise InvalidBank(f"unknown bank: {bank_id}") from None

    def get_account(self, account_id: str) -> Account:
        try:
            return self.accounts[account_id]
        except KeyError:
            raise InvalidAccount(f"unknown account: {account_id}") from None

    def asset_amount(self, account_id: str, bank_id: str) -> Decimal:
        """Tokens the account holds in bank, at the bank's last accrual."""
        return balance_asset_amount(self.get_account(account_id), self.get_bank(bank_id),
                                    self.config.fixed_point_places)

    def liability_amount(self, account_id: str, bank_id: str) -> Decimal:
        """Tokens the account owes bank, at the bank's last accrual."""
        return balance_liability_amount(self.get_account(account_id), self.get_bank(bank_id),
                                        self.config.fixed_point_places)

    def health(self, account_id: str,
               requirement: RequirementType = RequirementType.MAINTENANCE) -> HealthReport:
        """
        Value an account as of the current time without changing state.

        Raises:
            InvalidAccount, InvalidBank, StalePrice, InvalidPrice, MathOverflow
        """
        staging = _Staging(self)
        account = staging.account(account_id)
        self._accrue_all(staging, active_bank_ids(account))
        return self._health(staging, account, requirement)

    def declare_access(
        self,
        operation: str,
        account_id: Optional[str] = None,
        bank_id: Optional[str] = None,
        liquidator_id: Optional[str] = None,
        liquidatee_id: Optional[str] = None,
        liability_bank_id: Optional[str] = None,
        collateral_bank_id: Optional[str] = None,
    ) -> AccessSet:
        """
        Banks and accounts `operation` will read and write given current state.

        Unknown references are included as named; the operation itself will
        reject them.
        """
        if operation in ("accrue", "collect_fees"):
            return AccessSet(banks_written=frozenset([bank_id]))

        if operation in ("deposit", "repay"):
            return AccessSet(banks_written=frozenset([bank_id]),
                             accounts_read=frozenset([account_id]),
                             accounts_written=frozenset([account_id]))

        if operation in ("withdraw", "borrow", "handle_bankruptcy"):
            valued = frozenset([bank_id]) | self._bank_ids_of(account_id)
            return AccessSet(banks_read=valued, banks_written=valued,
                             accounts_read=frozenset([account_id]),
                             accounts_written=frozenset([account_id]))

        if operation == "liquidate":
            valued = (frozenset([liability_bank_id, collateral_bank_id])
                      | self._bank_ids_of(liquidator_id)
                      | self._bank_ids_of(liquidatee_id))
            both = frozenset([liquidator_id, liquidatee_id])
            return AccessSet(banks_read=valued, banks_written=valued,
                             accounts_read=both, accounts_written=both)

        raise ValueError(f"unknown operation: {operation}")

    # ========================================================================
    # ENTRY POINTS
    # ========================================================================

    def accrue(self, bank_id: str) -> OperationResult:
        """Accrue interest on one bank up to the current time."""
        def body(staging: _Staging) -> Dict[str, Any]:
            bank, result = accrue_bank(staging.bank(bank_id), self._current_time, self.config)
            staging.put_bank(bank)
            return {
                "elapsed_seconds": result.elapsed_seconds,
                "borrow_rate": result.rates.borrow_rate,
                "lend_rate": result.rates.lend_rate,
                "deposit_index": bank.state.deposit_index,
                "borrow_index": bank.state.borrow_index,
            }

        return self._execute("accrue", {"bank": bank_id},
                             self.declare_access("accrue", bank_id=bank_id), body)

    def deposit(self, account_id: str, bank_id: str, amount: Decimal) -> OperationResult:
        """Deposit `amount` tokens into bank. Not health-gated."""
        def body(staging: _Staging) -> Dict[str, Any]:
            value = validate_amount(amount, self.config.fixed_point_places)
            account = self._usable_account(staging, account_id)
            bank = self._accrue(staging, self._group_bank(staging, account, bank_id).bank_id)
            account, bank, shares = accounts.deposit(account, bank, value,
                                                     self.config.fixed_point_places)
            staging.put_account(account)
            staging.put_bank(bank)
            return {"amount": value, "shares": shares}

        return self._execute(
            "deposit", {"account": account_id, "bank": bank_id, "amount": amount},
            self.declare_access("deposit", account_id=account_id, bank_id=bank_id), body)

    def withdraw(self, account_id: str, bank_id: str, amount: Optional[Decimal] = None,
                 withdraw_all: bool = False) -> OperationResult:
        """
        Withdraw `amount` tokens, or everything with withdraw_all=True.

        The account must pass the Initial health check afterwards.
        """
        def body(staging: _Staging) -> Dict[str, Any]:
            value = self._requested_amount(amount, withdraw_all)
            account = self._usable_account(staging, account_id)
            self._group_bank(staging, account, bank_id)
            self._accrue_all(staging, [bank_id] + active_bank_ids(account))
            account, bank, paid, shares = accounts.withdraw(
                account, staging.bank(bank_id), value, self.config.fixed_point_places)
            staging.put_account(account)
            staging.put_bank(bank)
            details = {"amount": paid, "shares": shares}
            details.update(self._gate_initial_health(staging, account))
            return details

        return self._execute(
            "withdraw",
            {"account": account_id, "bank": bank_id, "amount": amount, "all": withdraw_all},
            self.declare_access("withdraw", account_id=account_id, bank_id=bank_id), body)

    def borrow(self, account_id: str, bank_id: str, amount: Decimal) -> OperationResult:
        """Borrow `amount` tokens; the account must pass the Initial health check afterwards."""
        def body(staging: _Staging) -> Dict[str, Any]:
            value = validate_amount(amount, self.config.fixed_point_places)
            account = self._usable_account(staging, account_id)
            self._group_bank(staging, account, bank_id)
            self._accrue_all(staging, [bank_id] + active_bank_ids(account))
            account, bank, shares = accounts.borrow(
                account, staging.bank(bank_id), value, self.config.fixed_point_places)
            staging.put_account(account)
            staging.put_bank(bank)
            details = {"amount": value, "shares": shares}
            details.update(self._gate_initial_health(staging, account))
            return details

        return self._execute(
            "borrow", {"account": account_id, "bank": bank_id, "amount": amount},
            self.declare_access("borrow", account_id=account_id, bank_id=bank_id), body)

    def repay(self, account_id: str, bank_id: str, amount: Optional[Decimal] = None,
              repay_all: bool = False) -> OperationResult:
        """Repay `amount` tokens of debt, or all of it with repay_all=True. Not health-gated."""
        def body(staging: _Staging) -> Dict[str, Any]:
            value = self._requested_amount(amount, repay_all)
            account = self._usable_account(staging, account_id)
            bank = self._accrue(staging, self._group_bank(staging, account, bank_id).bank_id)
            account, bank, collected, shares = accounts.repay(
                account, bank, value, self.config.fixed_point_places)
            staging.put_account(account)
            staging.put_bank(bank)
            return {"amount": collected, "shares": shares}

        return self._execute(
            "repay", {"account": account_id, "bank": bank_id, "amount": amount, "all": repay_all},
            self.declare_access("repay", account_id=account_id, bank_id=bank_id), body)

    def liquidate(self, liquidator_id: str, liquidatee_id: str, liability_bank_id: str,
                  collateral_bank_id: str, amount: Decimal) -> OperationResult:
        """
        Repay up to `amount` of the liquidatee's debt on the liability bank in
        exchange for its collateral in the collateral bank, at a bonus.

        All-or-nothing: the liquidatee's Maintenance health must not fall and
        the liquidator must stay above Initial health 1.0.
        """
        places = self.config.fixed_point_places
        k = self.config.confidence_multiplier

        def body(staging: _Staging) -> Dict[str, Any]:
            value = validate_amount(amount, places)
            if liquidator_id == liquidatee_id:
                raise IllegalLiquidation("an account cannot liquidate itself")
            if liability_bank_id == collateral_bank_id:
                raise IllegalLiquidation("liability and collateral banks must differ")

            liquidator = self._usable_account(staging, liquidator_id)
            liquidatee = self._usable_account(staging, liquidatee_id)
            if liquidator.group != liquidatee.group:
                raise IllegalLiquidation(
                    f"accounts are in different groups: {liquidator.group} vs {liquidatee.group}"
                )
            for bank_id in (liability_bank_id, collateral_bank_id):
                require_not_paused(self._group_bank(staging, liquidatee, bank_id))

            self._accrue_all(staging, [liability_bank_id, collateral_bank_id]
                             + active_bank_ids(liquidatee) + active_bank_ids(liquidator))

            before = self._health(staging, liquidatee, RequirementType.MAINTENANCE)
            check_liquidation_eligibility(before)

            liability_balance = find_balance(liquidatee, liability_bank_id)
            if liability_balance is None or not liability_balance.is_liability:
                raise IllegalLiquidation(
                    f"{liquidatee_id} has no liability on {liability_bank_id}"
                )
            collateral_balance = find_balance(liquidatee, collateral_bank_id)
            if collateral_balance is None or collateral_balance.asset_shares == 0:
                raise InsufficientCollateral(
                    f"{liquidatee_id} has no collateral in {collateral_bank_id}"
                )

            liability_bank = staging.bank(liability_bank_id)
            collateral_bank = staging.bank(collateral_bank_id)
            plan = calculate_liquidation_plan(
                nominated_amount=value,
                outstanding_liability=balance_liability_amount(liquidatee, liability_bank, places),
                available_collateral=balance_asset_amount(liquidatee, collateral_bank, places),
                report=before,
                liability_bank=liability_bank,
                collateral_bank=collateral_bank,
                liability_quote=self._quote(liability_bank),
                collateral_quote=self._quote(collateral_bank),
                close_factor=self.config.close_factor,
                k=k,
                places=places,
            )

            # Debt side: the liquidator takes over part of the liquidatee's debt.
            liquidatee, liability_bank = accounts.increase_balance(
                liquidatee, liability_bank, plan.repay_amount, places)
            liquidator, liability_bank = accounts.decrease_balance(
                liquidator, liability_bank, plan.repay_amount, places)

            # Collateral side: seized tokens stay in the pool, split between
            # the liquidator's balance and the insurance fund's shares.
            liquidator, collateral_bank = accounts.increase_balance(
                liquidator, collateral_bank, plan.liquidator_amount, places)
            if plan.insurance_amount > 0:
                collateral_bank, _ = credit_insurance(collateral_bank, plan.insurance_amount, places)
            liquidatee, collateral_bank = accounts.remove_asset(
                liquidatee, collateral_bank, plan.seized_amount, places)

            for bank in (liability_bank, collateral_bank):
                staging.put_bank(bank)
            for account in (liquidator, liquidatee):
                staging.put_account(account)

            after = self._health(staging, liquidatee, RequirementType.MAINTENANCE)
            liquidator_after = self._health(staging, liquidator, RequirementType.INITIAL)
            check_liquidation_outcome(before, after, liquidator_after)

            return {
                "repay_amount": plan.repay_amount,
                "repaid_value": plan.repaid_value,
                "seized_amount": plan.seized_amount,
                "liquidator_amount": plan.liquidator_amount,
                "insurance_amount": plan.insurance_amount,
                "health_before": before.health_factor,
                "health_after": after.health_factor,
            }

        return self._execute(
            "liquidate",
            {"liquidator": liquidator_id, "liquidatee": liquidatee_id,
             "liability_bank": liability_bank_id, "collateral_bank": collateral_bank_id,
             "amount": amount},
            self.declare_access("liquidate", liquidator_id=liquidator_id,
                                liquidatee_id=liquidatee_id,
                                liability_bank_id=liability_bank_id,
                                collateral_bank_id=collateral_bank_id),
            body)

    def collect_fees(self, bank_id: str) -> OperationResult:
        """Sweep outstanding protocol fees into the insurance and fee vaults."""
        def body(staging: _Staging) -> Dict[str, Any]:
            require_not_paused(staging.bank(bank_id))
            bank = self._accrue(staging, bank_id)
            bank, insurance, group = collect_bank_fees(bank, self.config.fixed_point_places)
            staging.put_bank(bank)
            return {"insurance_fees": insurance, "group_fees": group}

        return self._execute("collect_fees", {"bank": bank_id},
                             self.declare_access("collect_fees", bank_id=bank_id), body)

    def handle_bankruptcy(self, account_id: str, bank_id: str) -> OperationResult:
        """
        Write off a bankrupt account's debt on one bank.

        The account must owe the bank and have no Equity-weighted collateral
        left. The insurance vault repays what it can; the rest is recorded as
        the bank's uncovered bad debt.
        """
        def body(staging: _Staging) -> Dict[str, Any]:
            account = staging.account(account_id)
            require_not_paused(self._group_bank(staging, account, bank_id))
            self._accrue_all(staging, [bank_id] + active_bank_ids(account))

            report = self._health(staging, account, RequirementType.EQUITY)
            if not is_bankrupt(report):
                raise AccountNotBankrupt(
                    f"account {account_id} has {report.total_collateral_value} of collateral "
                    f"against {report.total_liability_value} of debt"
                )
            balance = find_balance(account, bank_id)
            if balance is None or not balance.is_liability:
                raise IllegalBalanceState(f"account {account_id} owes nothing to {bank_id}")

            account, bank, written_off = accounts.write_off_liability(
                account, staging.bank(bank_id), self.config.fixed_point_places)
            bank, covered = cover_bad_debt(bank, written_off, self.config.fixed_point_places)
            staging.put_account(account)
            staging.put_bank(bank)
            return {"written_off": written_off, "covered_by_insurance": covered,
                    "uncovered": written_off - covered}

        return self._execute(
            "handle_bankruptcy", {"account": account_id, "bank": bank_id},
            self.declare_access("handle_bankruptcy", account_id=account_id, bank_id=bank_id),
            body)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _execute(self, operation: str, params: Dict[str, Any], access: AccessSet,
                 body: Callable[[_Staging], Dict[str, Any]]) -> OperationResult:
        """Run body on a staging area and commit it only if it returns."""
        staging = _Staging(self)
        try:
            details = body(staging)
        except LendingError as exc:
            if self.verbose:
                print(f"✗ REJECTED: {operation} {self._format(params)}: "
                      f"{type(exc).__name__}: {exc}")
            return OperationResult(operation, OperationStatus.REJECTED, access, {}, exc)

        self.banks.update(staging.banks)
        self.accounts.update(staging.accounts)

        record = OperationRecord(
            sequence=self._next_sequence,
            operation=operation,
            timestamp=self._current_time,
            params=tuple(params.items()),
            details=tuple(details.items()),
        )
        self._next_sequence += 1
        self.operation_log.append(record)

        if self.verbose:
            print(f"✓ APPLIED: {operation} {self._format(params)} -> {self._format(details)}")
        return OperationResult(operation, OperationStatus.APPLIED, access, details)

    @staticmethod
    def _format(values: Dict[str, Any]) -> str:
        return ", ".join(f"{k}={v}" for k, v in values.items() if v is not None)

    def _bank_ids_of(self, account_id: Optional[str]) -> FrozenSet[str]:
        account = self.accounts.get(account_id) if account_id is not None else None
        if account is None:
            return frozenset()
        return frozenset(active_bank_ids(account))

    def _requested_amount(self, amount: Optional[Decimal], everything: bool) -> Optional[Decimal]:
        if everything:
            return None
        if amount is None:
            raise InvalidAmount("amount is required unless the whole balance is requested")
        return validate_amount(amount, self.config.fixed_point_places)

    def _usable_account(self, staging: _Staging, account_id: str) -> Account:
        account = staging.account(account_id)
        if account.disabled:
            raise AccountDisabled(f"account {account_id} is disabled")
        return account

    def _group_bank(self, staging: _Staging, account: Account, bank_id: str) -> Bank:
        bank = staging.bank(bank_id)
        if bank.group != account.group:
            raise InvalidBank(
                f"bank {bank_id} belongs to group {bank.group}, "
                f"account {account.account_id} to {account.group}"
            )
        return bank

    def _accrue(self, staging: _Staging, bank_id: str) -> Bank:
        bank, _ = accrue_bank(staging.bank(bank_id), self._current_time, self.config)
        staging.put_bank(bank)
        return bank

    def _accrue_all(self, staging: _Staging, bank_ids: List[str]) -> None:
        for bank_id in dict.fromkeys(bank_ids):
            self._accrue(staging, bank_id)

    def _quote(self, bank: Bank) -> PriceQuote:
        max_age = bank.config.max_price_age
        if max_age is None:
            max_age = self.config.max_price_age
        return fetch_checked_quote(self.oracle, bank.config.oracle_ref, self._current_time, max_age)

    def _health(self, staging: _Staging, account: Account,
                requirement: RequirementType) -> HealthReport:
        bank_ids = active_bank_ids(account)
        banks = {bank_id: staging.bank(bank_id) for bank_id in bank_ids}
        quotes = {bank_id: self._quote(bank) for bank_id, bank in banks.items()}
        return calculate_health(account, banks, quotes, requirement,
                                self.config.confidence_multiplier,
                                self.config.fixed_point_places)

    def _gate_initial_health(self, staging: _Staging, account: Account) -> Dict[str, Any]:
        """
        Initial health gate for withdraw and borrow.

        An account without debt cannot fail the gate, so it is not valued.
        """
        if not any(b is not None and b.is_liability for b in account.balances):
            return {}
        report = self._health(staging, account, RequirementType.INITIAL)
        check_initial_health(report)
        return {"initial_health": report.health_factor}

    # ========================================================================
    # CLONING
    # ========================================================================

    def clone(self) -> LendingEngine:
        """
        Create an independent copy of this engine.

        Banks and accounts are frozen, so copying the registries is enough.
        The oracle is an external capability and is shared, not copied.
        """
        cloned = LendingEngine.__new__(LendingEngine)
        cloned.name = self.name
        cloned.oracle = self.oracle
        cloned.config = self.config
        cloned.verbose = self.verbose
        cloned.groups = set(self.groups)
        cloned.banks = dict(self.banks)
        cloned.accounts = dict(self.accounts)
        cloned.operation_log = list(self.operation_log)
        cloned._current_time = self._current_time
        cloned._next_sequence = self._next_sequence
        return cloned
