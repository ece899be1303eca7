import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3RPCError

from .errors import (
    ChainQueryError,
    ConfigError,
    ConfirmationTimeoutError,
    EstimationError,
    SubmissionError,
    TransactionRevertedError,
)

_PRIV_RE = re.compile(r"^(?:0x)?([0-9a-fA-F]{64})$")


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    block_number: int
    gas_used: int
    status: int = 1

    @classmethod
    def from_web3(cls, receipt) -> "Receipt":
        return cls(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt["gasUsed"]),
            status=int(receipt.get("status", 1)),
        )


def mask_key(key: str) -> str:
    return f"{key[:6]}...{key[-4:]}" if len(key) > 12 else "****"


def normalize_private_key(raw: str) -> str:
    """
    Private key: hex with/without 0x, 64 hex chars. Returns '0x' + lowercase.
    """
    m = _PRIV_RE.match((raw or "").strip())
    if not m:
        raise ConfigError(f"PRIVATE_KEY is not a 64 character hex key ({mask_key((raw or '').strip())})")
    return "0x" + m.group(1).lower()


class Web3Helper:
    """
    Chain client for a single RPC endpoint: balance and view reads, gas
    estimation, signed submission and confirmation waiting.

    Every failure is re-raised as one of the ``utils.errors`` types so callers
    can tell a failed read from a rejected estimate or an ambiguous send.
    Nothing here retries on its own, except the confirmation poll which is
    bounded by its timeout.
    """

    def __init__(self, settings, console=None, w3: Optional[Web3] = None, request_timeout: int = 30):
        self.console = console
        self.cfg = settings
        self.logger = logging.getLogger(__name__)

        if w3 is None:
            self.provider = Web3.HTTPProvider(settings.rpc_url, request_kwargs={"timeout": request_timeout})
            w3 = Web3(self.provider)
        self.w3 = w3
        self._chain_id: Optional[int] = None

    # ---------- Wallet ----------
    def load_wallet(self, private_key: Optional[str] = None) -> LocalAccount:
        key = normalize_private_key(private_key if private_key is not None else self.cfg.private_key)
        try:
            return Account.from_key(key)
        except Exception as exc:
            raise ConfigError(f"Invalid private key {mask_key(key)}: {exc}") from exc

    # ---------- RPC ----------
    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(self.w3.eth.chain_id)
        return self._chain_id

    def contract(self, contract_address: str, abi):
        if isinstance(abi, str):
            abi = json.loads(abi)
        return self.w3.eth.contract(address=self.w3.to_checksum_address(contract_address), abi=abi)

    def _function(self, contract_address: str, abi, fn_name: str, args: Sequence[Any]):
        c = self.contract(contract_address, abi)
        return getattr(c.functions, fn_name)(*args)

    def _tx_params(self, wallet: LocalAccount, fee_params, value: int) -> dict:
        params = {"from": wallet.address, "value": int(value)}
        params.update(fee_params.as_tx_params())
        return params

    # ---------- Reads ----------
    def get_balance(self, address: str) -> int:
        try:
            return int(self.w3.eth.get_balance(self.w3.to_checksum_address(address)))
        except Exception as exc:
            raise ChainQueryError(f"Failed to read native balance of {address}: {exc}") from exc

    def call_view(self, contract_address: str, abi, fn_name: str, args: Sequence[Any] = ()) -> int:
        try:
            return int(self._function(contract_address, abi, fn_name, args).call())
        except Exception as exc:
            raise ChainQueryError(f"{fn_name}() call on {contract_address} failed: {exc}") from exc

    # ---------- Gas ----------
    def estimate_gas(self, wallet: LocalAccount, contract_address: str, abi, fn_name: str,
                     args: Sequence[Any], fee_params, value: int = 0) -> int:
        try:
            fn = self._function(contract_address, abi, fn_name, args)
            return int(fn.estimate_gas(self._tx_params(wallet, fee_params, value)))
        except Exception as exc:
            raise EstimationError(f"Gas estimation for {fn_name}() failed: {exc}") from exc

    # ---------- Tx lifecycle ----------
    def submit(self, wallet: LocalAccount, contract_address: str, abi, fn_name: str, args: Sequence[Any],
               fee_params, gas_limit: int, value: int = 0) -> str:
        try:
            fn = self._function(contract_address, abi, fn_name, args)
            tx = fn.build_transaction({
                **self._tx_params(wallet, fee_params, value),
                "chainId": self.chain_id,
                "nonce": self.w3.eth.get_transaction_count(wallet.address, "pending"),
                "gas": int(gas_limit),
            })
            signed = self.w3.eth.account.sign_transaction(tx, private_key=wallet.key)
        except Exception as exc:
            raise SubmissionError(f"Failed to prepare {fn_name}() transaction: {exc}", broadcast_possible=False) from exc

        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Web3RPCError as exc:
            # node answered with an error: it did not take the transaction
            raise SubmissionError(f"Node rejected {fn_name}() transaction: {exc}", broadcast_possible=False) from exc
        except Exception as exc:
            raise SubmissionError(f"Sending {fn_name}() transaction failed: {exc}", broadcast_possible=True) from exc

        tx_hash = Web3.to_hex(tx_hash)
        self.logger.debug("Sent %s() tx %s (nonce %s, gas %s)", fn_name, tx_hash, tx.get("nonce"), gas_limit)
        return tx_hash

    def wait_confirmations(self, tx_hash: str, confirmations: int = 1, timeout: float = 300,
                           start_delay: float = 2, max_delay: float = 8) -> Receipt:
        """
        Poll until ``tx_hash`` is mined and buried under ``confirmations`` blocks
        (the inclusion block counts as the first).
        """
        start = time.monotonic()
        delay = start_delay
        receipt = None
        while True:
            try:
                if receipt is None:
                    receipt = self.w3.eth.get_transaction_receipt(tx_hash)
                if receipt is not None:
                    depth = int(self.w3.eth.block_number) - int(receipt["blockNumber"]) + 1
                    if receipt.get("status", 1) == 0:
                        raise TransactionRevertedError(
                            f"Transaction {tx_hash} reverted in block {receipt['blockNumber']}",
                            tx_hash=tx_hash,
                            block_number=int(receipt["blockNumber"]),
                        )
                    if depth >= confirmations:
                        return Receipt.from_web3(receipt)
            except TransactionNotFound:
                pass
            except TransactionRevertedError:
                raise
            except Exception as exc:
                self.logger.debug("Receipt poll for %s failed: %s", tx_hash, exc)

            if time.monotonic() - start > timeout:
                raise ConfirmationTimeoutError(
                    f"Timed out after {timeout:.0f}s waiting for {confirmations} confirmation(s) of {tx_hash}",
                    tx_hash=tx_hash,
                )
            time.sleep(delay)
            delay = min(max_delay, delay * 1.5)
