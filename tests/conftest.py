from types import SimpleNamespace

import pytest
import questionary
from eth_account import Account

from config import Settings
from utils.errors import EstimationError
from utils.helper import Receipt

TEST_KEY = "0x" + "11" * 32
ETHER = 10 ** 18


class FakeChain:
    """
    In-memory stand-in for Web3Helper. Tracks native and wrapped balances and
    applies deposit/withdraw on submit. ``fail(method, exc, ...)`` queues
    exceptions; a queued None lets that call through.
    """

    def __init__(self, gas_estimate=45000, gas_used=43000, block=100):
        self.native = {}
        self.wrapped = {}
        self.gas_estimate = gas_estimate
        self.gas_used = gas_used
        self.block = block
        self.calls = []
        self.submitted = []
        self.receipts = {}
        self.failures = {}

    def fund(self, address, native=0, wrapped=0):
        self.native[address] = native
        self.wrapped[address] = wrapped

    def fail(self, method, *errors):
        self.failures.setdefault(method, []).extend(errors)

    def _maybe_fail(self, method):
        queue = self.failures.get(method)
        if queue:
            exc = queue.pop(0)
            if exc is not None:
                raise exc

    def load_wallet(self, private_key=None):
        return Account.from_key(private_key or TEST_KEY)

    def get_balance(self, address):
        self.calls.append(("get_balance", address))
        self._maybe_fail("get_balance")
        return self.native.get(address, 0)

    def call_view(self, contract_address, abi, fn_name, args=()):
        self.calls.append(("call_view", fn_name, tuple(args)))
        self._maybe_fail("call_view")
        assert fn_name == "balanceOf"
        return self.wrapped.get(args[0], 0)

    def estimate_gas(self, wallet, contract_address, abi, fn_name, args, fee_params, value=0):
        self.calls.append(("estimate_gas", fn_name, tuple(args), value))
        self._maybe_fail("estimate_gas")
        if fn_name == "deposit" and value > self.native.get(wallet.address, 0):
            raise EstimationError("insufficient funds for gas * price + value")
        if fn_name == "withdraw" and args[0] > self.wrapped.get(wallet.address, 0):
            raise EstimationError("execution reverted")
        return self.gas_estimate

    def submit(self, wallet, contract_address, abi, fn_name, args, fee_params, gas_limit, value=0):
        self.calls.append(("submit", fn_name, tuple(args), value, gas_limit))
        self._maybe_fail("submit")
        fee = self.gas_used * fee_params.max_fee_per_gas
        addr = wallet.address
        if fn_name == "deposit":
            self.native[addr] -= value + fee
            self.wrapped[addr] = self.wrapped.get(addr, 0) + value
        else:
            self.wrapped[addr] -= args[0]
            self.native[addr] += args[0] - fee
        self.block += 1
        tx_hash = "0x%064x" % (len(self.submitted) + 1)
        self.submitted.append(SimpleNamespace(fn=fn_name, args=list(args), value=value,
                                              gas_limit=gas_limit, fee_params=fee_params))
        self.receipts[tx_hash] = Receipt(tx_hash=tx_hash, block_number=self.block, gas_used=self.gas_used)
        return tx_hash

    def wait_confirmations(self, tx_hash, confirmations=1, timeout=300):
        self.calls.append(("wait_confirmations", tx_hash, confirmations))
        self._maybe_fail("wait_confirmations")
        self.block += confirmations - 1
        return self.receipts[tx_hash]


@pytest.fixture
def settings():
    return Settings(rpc_url="http://localhost:8545", private_key=TEST_KEY)


@pytest.fixture
def wallet():
    return Account.from_key(TEST_KEY)


@pytest.fixture
def chain(wallet):
    c = FakeChain()
    c.fund(wallet.address, native=10 * ETHER, wrapped=2 * ETHER)
    return c


class Prompter:
    """
    Replaces questionary prompts with queued answers per prompt type.
    Answers refused by a ``validate`` callback are recorded in ``rejected`` and
    the next queued answer is used, as questionary keeps the prompt open.
    """

    def __init__(self, monkeypatch):
        self.answers = {"select": [], "text": [], "confirm": []}
        self.asked = []
        self.rejected = []
        for kind in self.answers:
            monkeypatch.setattr(questionary, kind, self._factory(kind))

    def _factory(self, kind):
        def prompt(message, *args, validate=None, **kwargs):
            self.asked.append((kind, message))
            queue = self.answers[kind]
            while True:
                if not queue:
                    raise AssertionError(f"unexpected {kind} prompt: {message}")
                value = queue.pop(0)
                verdict = True if validate is None or value is None else validate(value)
                if verdict is True:
                    return SimpleNamespace(ask=lambda: value)
                self.rejected.append((message, value, verdict))
        return prompt

    def queue(self, kind, *values):
        self.answers[kind].extend(values)
        return self


@pytest.fixture
def prompter(monkeypatch):
    return Prompter(monkeypatch)
