"""
Wrap/unwrap execution engine.

BalanceReader reads both balances, TransactionExecutor sends one wrap or
unwrap, ExecutionLoop repeats it with a continue/abort decision after every
failure. Prompting and rendering stay with the caller, which passes callbacks.
"""
import contextlib
import logging
from dataclasses import dataclass, field, replace
from decimal import ROUND_CEILING, ROUND_DOWN, Decimal, InvalidOperation, localcontext
from enum import Enum
from typing import Callable, ContextManager, List, Optional, Tuple

from web3 import Web3

from config import XOS, FeeParams
from .errors import (
    AmountConversionError,
    ConfirmationTimeoutError,
    InsufficientBalanceError,
    SubmissionError,
    ValidationError,
    WrapperError,
)
from .helper import Receipt

logger = logging.getLogger(__name__)

WEI_DECIMALS = 18
DECIMAL_PRECISION = 60


class OperationKind(str, Enum):
    WRAP = "wrap"
    UNWRAP = "unwrap"

    @property
    def source_symbol(self) -> str:
        return XOS.NATIVE_SYMBOL if self is OperationKind.WRAP else XOS.WRAPPED_SYMBOL

    @property
    def target_symbol(self) -> str:
        return XOS.WRAPPED_SYMBOL if self is OperationKind.WRAP else XOS.NATIVE_SYMBOL


class OutcomeStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    UNKNOWN = "unknown"  # may still land on chain


@dataclass(frozen=True)
class Balances:
    native: str
    wrapped: str

    def bound_for(self, kind: OperationKind) -> str:
        return self.native if kind is OperationKind.WRAP else self.wrapped


@dataclass(frozen=True)
class LoopPosition:
    current: int
    total: int

    def __str__(self) -> str:
        return f"{self.current}/{self.total}"


@dataclass(frozen=True)
class TransactionRequest:
    kind: OperationKind
    amount: Decimal
    amount_wei: int
    fee_params: FeeParams


@dataclass(frozen=True)
class TransactionOutcome:
    request: Optional[TransactionRequest]
    status: OutcomeStatus
    tx_hash: Optional[str] = None
    gas_limit: Optional[int] = None
    receipt: Optional[Receipt] = None
    error: Optional[WrapperError] = None

    @classmethod
    def from_error(cls, error: WrapperError, request: Optional[TransactionRequest] = None,
                   pending: Optional["TransactionOutcome"] = None) -> "TransactionOutcome":
        ambiguous = isinstance(error, ConfirmationTimeoutError) or (
            isinstance(error, SubmissionError) and error.broadcast_possible
        )
        status = OutcomeStatus.UNKNOWN if ambiguous else OutcomeStatus.FAILED
        if pending is not None:
            return replace(pending, status=status, error=error)
        return cls(request=request, status=status, error=error)

    @property
    def confirmed(self) -> bool:
        return self.status is OutcomeStatus.CONFIRMED


@dataclass
class LoopRun:
    total: int
    current: int = 0
    success_count: int = 0
    aborted: bool = False
    outcomes: List[TransactionOutcome] = field(default_factory=list)

    @property
    def attempts(self) -> int:
        return len(self.outcomes)

    @property
    def summary(self) -> str:
        return f"{self.success_count}/{self.total}"


# ---------- Amount helpers ----------

def parse_amount(text) -> Decimal:
    try:
        amount = Decimal(str(text).strip())
    except (InvalidOperation, ValueError) as exc:
        raise AmountConversionError(f"Not a number: {text!r}") from exc
    if not amount.is_finite():
        raise AmountConversionError(f"Not a finite number: {text!r}")
    return amount


def to_wei_amount(amount) -> int:
    """Human amount (ether units) to wei. Rejects non-positive and over-precise values."""
    value = parse_amount(amount)
    if value <= 0:
        raise AmountConversionError(f"Amount must be greater than 0, got {value}")
    if value.as_tuple().exponent < -WEI_DECIMALS:
        raise AmountConversionError(f"Amount {value} has more than {WEI_DECIMALS} decimals")
    try:
        return int(Web3.to_wei(value, "ether"))
    except ValueError as exc:
        raise AmountConversionError(f"Amount {value} is out of range: {exc}") from exc


def format_units(raw: int, places: int = XOS.BALANCE_DECIMALS) -> str:
    # rounded down so a displayed balance is always spendable
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        value = Decimal(int(raw)).scaleb(-WEI_DECIMALS)
        value = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
    return f"{value:.{places}f}"


def validate_amount(text, bound: str) -> Decimal:
    """Prompt-time check: ``0 < amount <= bound``, at most 18 decimals. Raises ValidationError."""
    try:
        amount = parse_amount(text)
    except AmountConversionError:
        raise ValidationError(f"Invalid amount! Maximum {bound}")
    if amount <= 0 or amount > Decimal(bound) or amount.as_tuple().exponent < -WEI_DECIMALS:
        raise ValidationError(f"Invalid amount! Maximum {bound}")
    return amount


def validate_repeat_count(value) -> int:
    try:
        count = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError("Please enter a number greater than 0")
    if count < 1:
        raise ValidationError("Please enter a number greater than 0")
    return count


def apply_gas_margin(estimate: int, margin: Decimal = XOS.GAS_MARGIN) -> int:
    return int((Decimal(int(estimate)) * margin).to_integral_value(rounding=ROUND_CEILING))


# ---------- Components ----------

class BalanceReader:
    def __init__(self, chain, settings):
        self.chain = chain
        self.settings = settings

    def read_raw(self, address: str) -> Tuple[int, int]:
        native = self.chain.get_balance(address)
        wrapped = self.chain.call_view(self.settings.contract_address, XOS.WXOS_ABI, "balanceOf", [address])
        return native, wrapped

    def read_balances(self, address: str) -> Balances:
        native, wrapped = self.read_raw(address)
        return Balances(native=format_units(native), wrapped=format_units(wrapped))

    def available(self, address: str, kind: OperationKind) -> int:
        if kind is OperationKind.WRAP:
            return self.chain.get_balance(address)
        return self.chain.call_view(self.settings.contract_address, XOS.WXOS_ABI, "balanceOf", [address])


class TransactionExecutor:
    """
    Builds, estimates and submits a single wrap or unwrap. ``execute`` returns
    a pending outcome; ``await_confirmation`` turns it into a confirmed one.
    Failures are raised as ``WrapperError`` subclasses.
    """

    def __init__(self, chain, settings, balance_reader: Optional[BalanceReader] = None):
        self.chain = chain
        self.settings = settings
        self.balance_reader = balance_reader

    def build_request(self, kind: OperationKind, amount) -> TransactionRequest:
        return TransactionRequest(
            kind=OperationKind(kind),
            amount=parse_amount(amount),
            amount_wei=to_wei_amount(amount),
            fee_params=self.settings.fee_params,
        )

    @staticmethod
    def entry_point(request: TransactionRequest):
        """(function name, args, value) for the wrapper contract."""
        if request.kind is OperationKind.WRAP:
            return "deposit", [], request.amount_wei
        return "withdraw", [request.amount_wei], 0

    def execute(self, kind: OperationKind, amount, wallet, position: Optional[LoopPosition] = None) -> TransactionOutcome:
        position = position or LoopPosition(1, 1)
        request = self.build_request(kind, amount)
        fn_name, args, value = self.entry_point(request)

        if self.balance_reader is not None:
            available = self.balance_reader.available(wallet.address, request.kind)
            if request.amount_wei > available:
                raise InsufficientBalanceError(
                    f"{request.amount} {request.kind.source_symbol} exceeds the current balance of "
                    f"{format_units(available)} {request.kind.source_symbol}",
                    available=available,
                )

        logger.info("Estimating gas (%s)...", position)
        estimate = self.chain.estimate_gas(
            wallet, self.settings.contract_address, XOS.WXOS_ABI, fn_name, args, request.fee_params, value=value,
        )
        gas_limit = apply_gas_margin(estimate, self.settings.gas_margin)
        logger.debug("Gas estimate %s, limit %s", estimate, gas_limit)

        logger.info("%s %s %s (%s)...", "Wrapping" if request.kind is OperationKind.WRAP else "Unwrapping",
                    request.amount, request.kind.source_symbol, position)
        tx_hash = self.chain.submit(
            wallet, self.settings.contract_address, XOS.WXOS_ABI, fn_name, args, request.fee_params,
            gas_limit, value=value,
        )
        logger.info("Transaction %s sent: %s", position, tx_hash)
        return TransactionOutcome(request=request, status=OutcomeStatus.PENDING, tx_hash=tx_hash, gas_limit=gas_limit)

    def await_confirmation(self, outcome: TransactionOutcome, confirmations: Optional[int] = None) -> TransactionOutcome:
        if confirmations is None:
            confirmations = self.settings.confirmations
        receipt = self.chain.wait_confirmations(
            outcome.tx_hash, confirmations, timeout=self.settings.confirmation_timeout,
        )
        return replace(outcome, status=OutcomeStatus.CONFIRMED, receipt=receipt)


def _nullstatus(_text: str) -> ContextManager:
    return contextlib.nullcontext()


class ExecutionLoop:
    """
    Runs the executor ``repeat_count`` times, one after the other.

    Callbacks:
      should_continue(position, error) -> bool   asked after every failure
      on_success(position, outcome, balances)
      on_failure(position, error)
      status(text) -> context manager            wraps each network wait
    """

    def __init__(self, executor: TransactionExecutor, balance_reader: BalanceReader,
                 should_continue: Optional[Callable[[LoopPosition, WrapperError], bool]] = None,
                 on_success: Optional[Callable[[LoopPosition, TransactionOutcome, Balances], None]] = None,
                 on_failure: Optional[Callable[[LoopPosition, WrapperError], None]] = None,
                 status: Callable[[str], ContextManager] = _nullstatus):
        self.executor = executor
        self.balance_reader = balance_reader
        self.should_continue = should_continue or (lambda position, error: True)
        self.on_success = on_success
        self.on_failure = on_failure
        self.status = status

    def run(self, kind: OperationKind, amount, wallet, repeat_count: int) -> LoopRun:
        total = validate_repeat_count(repeat_count)
        run = LoopRun(total=total)

        for i in range(1, total + 1):
            run.current = i
            position = LoopPosition(i, total)
            pending = None
            confirmed = False
            try:
                with self.status(f"Processing transaction {position}..."):
                    pending = self.executor.execute(kind, amount, wallet, position)
                with self.status(f"Waiting for confirmation ({position})..."):
                    outcome = self.executor.await_confirmation(pending)
                run.success_count += 1
                run.outcomes.append(outcome)
                confirmed = True

                balances = self.balance_reader.read_balances(wallet.address)
                if self.on_success:
                    self.on_success(position, outcome, balances)
            except WrapperError as exc:
                if not confirmed:
                    run.outcomes.append(TransactionOutcome.from_error(exc, pending=pending))
                logger.debug("Transaction %s failed: %r", position, exc)
                if self.on_failure:
                    self.on_failure(position, exc)
                if not self.should_continue(position, exc):
                    run.aborted = True
                    break

        logger.info("Total succeeded: %s", run.summary)
        return run
