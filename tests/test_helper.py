from types import SimpleNamespace
from unittest.mock import MagicMock, PropertyMock

import pytest
from web3.exceptions import TransactionNotFound, Web3RPCError

import utils.helper as helper_mod
from config import XOS
from utils.errors import (
    ChainQueryError,
    ConfigError,
    ConfirmationTimeoutError,
    EstimationError,
    SubmissionError,
    TransactionRevertedError,
)
from utils.helper import Receipt, Web3Helper, normalize_private_key

from conftest import TEST_KEY


def make_helper(settings):
    w3 = MagicMock()
    w3.to_checksum_address = lambda x: x
    w3.eth.chain_id = 1267
    return Web3Helper(settings, w3=w3), w3


def _fn(w3, name):
    return getattr(w3.eth.contract.return_value.functions, name).return_value


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr(helper_mod.time, "sleep", lambda _s: None)


def test_normalize_private_key():
    assert normalize_private_key("11" * 32) == TEST_KEY
    assert normalize_private_key("  0x" + "AB" * 32 + " ") == "0x" + "ab" * 32
    with pytest.raises(ConfigError):
        normalize_private_key("xyz")


def test_load_wallet(settings):
    helper, _ = make_helper(settings)
    wallet = helper.load_wallet()
    assert wallet.address.startswith("0x") and len(wallet.address) == 42


def test_get_balance(settings):
    helper, w3 = make_helper(settings)
    w3.eth.get_balance.return_value = 123
    assert helper.get_balance("0xabc") == 123


def test_get_balance_wraps_errors(settings):
    helper, w3 = make_helper(settings)
    w3.eth.get_balance.side_effect = ConnectionError("refused")
    with pytest.raises(ChainQueryError) as exc_info:
        helper.get_balance("0xabc")
    assert isinstance(exc_info.value.__cause__, ConnectionError)


def test_call_view(settings):
    helper, w3 = make_helper(settings)
    _fn(w3, "balanceOf").call.return_value = 7
    assert helper.call_view(XOS.WXOS_CA, XOS.WXOS_ABI, "balanceOf", ["0xabc"]) == 7
    w3.eth.contract.return_value.functions.balanceOf.assert_called_once_with("0xabc")


def test_call_view_wraps_errors(settings):
    helper, w3 = make_helper(settings)
    _fn(w3, "balanceOf").call.side_effect = TimeoutError("read timeout")
    with pytest.raises(ChainQueryError):
        helper.call_view(XOS.WXOS_CA, XOS.WXOS_ABI, "balanceOf", ["0xabc"])


def test_estimate_gas_passes_fixed_fees(settings, wallet):
    helper, w3 = make_helper(settings)
    _fn(w3, "deposit").estimate_gas.return_value = 45000
    gas = helper.estimate_gas(wallet, XOS.WXOS_CA, XOS.WXOS_ABI, "deposit", [], XOS.FEE_PARAMS, value=10)
    assert gas == 45000
    params = _fn(w3, "deposit").estimate_gas.call_args[0][0]
    assert params["from"] == wallet.address
    assert params["value"] == 10
    assert params["maxFeePerGas"] == 11
    assert params["maxPriorityFeePerGas"] == 2


def test_estimate_gas_failure(settings, wallet):
    helper, w3 = make_helper(settings)
    _fn(w3, "withdraw").estimate_gas.side_effect = ValueError("execution reverted")
    with pytest.raises(EstimationError):
        helper.estimate_gas(wallet, XOS.WXOS_CA, XOS.WXOS_ABI, "withdraw", [5], XOS.FEE_PARAMS)


def _prepare_submit(w3):
    _fn(w3, "withdraw").build_transaction.side_effect = lambda tx: dict(tx)
    w3.eth.get_transaction_count.return_value = 5
    w3.eth.account.sign_transaction.return_value = SimpleNamespace(raw_transaction=b"\x01\x02")


def test_submit(settings, wallet):
    helper, w3 = make_helper(settings)
    _prepare_submit(w3)
    w3.eth.send_raw_transaction.return_value = b"\x12" * 32

    tx_hash = helper.submit(wallet, XOS.WXOS_CA, XOS.WXOS_ABI, "withdraw", [5], XOS.FEE_PARAMS, gas_limit=54000)

    assert tx_hash == "0x" + "12" * 32
    tx = w3.eth.account.sign_transaction.call_args[0][0]
    assert tx["gas"] == 54000
    assert tx["nonce"] == 5
    assert tx["chainId"] == 1267
    assert tx["maxFeePerGas"] == 11
    w3.eth.get_transaction_count.assert_called_once_with(wallet.address, "pending")
    w3.eth.send_raw_transaction.assert_called_once_with(b"\x01\x02")


def test_submit_rejected_by_node_was_not_broadcast(settings, wallet):
    helper, w3 = make_helper(settings)
    _prepare_submit(w3)
    w3.eth.send_raw_transaction.side_effect = Web3RPCError("nonce too low")
    with pytest.raises(SubmissionError) as exc_info:
        helper.submit(wallet, XOS.WXOS_CA, XOS.WXOS_ABI, "withdraw", [5], XOS.FEE_PARAMS, gas_limit=1)
    assert exc_info.value.broadcast_possible is False


def test_submit_transport_failure_is_ambiguous(settings, wallet):
    helper, w3 = make_helper(settings)
    _prepare_submit(w3)
    w3.eth.send_raw_transaction.side_effect = TimeoutError("read timed out")
    with pytest.raises(SubmissionError) as exc_info:
        helper.submit(wallet, XOS.WXOS_CA, XOS.WXOS_ABI, "withdraw", [5], XOS.FEE_PARAMS, gas_limit=1)
    assert exc_info.value.broadcast_possible is True


def test_submit_failure_before_send(settings, wallet):
    helper, w3 = make_helper(settings)
    _prepare_submit(w3)
    w3.eth.get_transaction_count.side_effect = ConnectionError("refused")
    with pytest.raises(SubmissionError) as exc_info:
        helper.submit(wallet, XOS.WXOS_CA, XOS.WXOS_ABI, "withdraw", [5], XOS.FEE_PARAMS, gas_limit=1)
    assert exc_info.value.broadcast_possible is False
    w3.eth.send_raw_transaction.assert_not_called()


def _receipt(block, status=1):
    return {"transactionHash": b"\x01" * 32, "blockNumber": block, "gasUsed": 30000, "status": status}


def test_wait_confirmations_returns_receipt(settings, no_sleep):
    helper, w3 = make_helper(settings)
    w3.eth.get_transaction_receipt.return_value = _receipt(10)
    w3.eth.block_number = 12
    receipt = helper.wait_confirmations("0x01", confirmations=3)
    assert receipt == Receipt(tx_hash="0x" + "01" * 32, block_number=10, gas_used=30000, status=1)


def test_wait_confirmations_polls_until_depth(settings, no_sleep):
    helper, w3 = make_helper(settings)
    w3.eth.get_transaction_receipt.side_effect = [TransactionNotFound("pending"), _receipt(10)]
    block_number = PropertyMock(side_effect=[10, 11, 12])
    type(w3.eth).block_number = block_number
    receipt = helper.wait_confirmations("0x01", confirmations=3)
    assert receipt.block_number == 10
    assert block_number.call_count == 3
    assert w3.eth.get_transaction_receipt.call_count == 2


def test_wait_confirmations_reverted(settings, no_sleep):
    helper, w3 = make_helper(settings)
    w3.eth.get_transaction_receipt.return_value = _receipt(10, status=0)
    w3.eth.block_number = 10
    with pytest.raises(TransactionRevertedError) as exc_info:
        helper.wait_confirmations("0x01", confirmations=3)
    assert exc_info.value.block_number == 10


def test_wait_confirmations_timeout(settings, no_sleep):
    helper, w3 = make_helper(settings)
    w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("pending")
    with pytest.raises(ConfirmationTimeoutError) as exc_info:
        helper.wait_confirmations("0x01", confirmations=3, timeout=0)
    assert exc_info.value.tx_hash == "0x01"
