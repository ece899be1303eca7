# config.py
import logging
import math
import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from web3 import Web3

from utils.errors import ConfigError

load_dotenv()

MODULE_PATH = Path(__file__).resolve().parent / "modules"

WXOS_CA = "0x4200000000000000000000000000000000000006"

WXOS_ABI = '''[
  {
    "type": "function",
    "name": "deposit",
    "stateMutability": "payable",
    "inputs": [],
    "outputs": []
  },
  {
    "type": "function",
    "name": "withdraw",
    "stateMutability": "nonpayable",
    "inputs": [{"name": "wad", "type": "uint256"}],
    "outputs": []
  },
  {
    "type": "function",
    "name": "balanceOf",
    "stateMutability": "view",
    "inputs": [{"name": "", "type": "address"}],
    "outputs": [{"name": "", "type": "uint256"}]
  }
]'''


@dataclass(frozen=True)
class FeeParams:
    max_priority_fee_per_gas: int
    max_fee_per_gas: int

    def as_tx_params(self) -> dict:
        return {
            "type": 2,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "maxFeePerGas": self.max_fee_per_gas,
        }


class XOS :
    CHAIN_NAME = "xos"
    NATIVE_SYMBOL = "XOS"
    WRAPPED_SYMBOL = "WXOS"

    WXOS_CA = WXOS_CA
    WXOS_ABI = WXOS_ABI

    # Ultra low fixed fees: 0.000000002 / 0.000000011 gwei
    FEE_PARAMS = FeeParams(
        max_priority_fee_per_gas=Web3.to_wei(Decimal("0.000000002"), "gwei"),
        max_fee_per_gas=Web3.to_wei(Decimal("0.000000011"), "gwei"),
    )

    CONFIRMATIONS = 3
    CONFIRMATION_TIMEOUT = 300  # seconds
    GAS_MARGIN = Decimal("1.2")
    BALANCE_DECIMALS = 8


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    private_key: str
    contract_address: str = XOS.WXOS_CA
    fee_params: FeeParams = XOS.FEE_PARAMS
    confirmations: int = XOS.CONFIRMATIONS
    confirmation_timeout: float = XOS.CONFIRMATION_TIMEOUT
    gas_margin: Decimal = XOS.GAS_MARGIN
    explorer_url: Optional[str] = None
    log_level: str = "INFO"


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build the process settings from the environment (``.env`` is already loaded).
    RPC_URL and PRIVATE_KEY are required.
    """
    env = os.environ if environ is None else environ

    rpc_url = (env.get("RPC_URL") or "").strip()
    private_key = (env.get("PRIVATE_KEY") or "").strip()
    missing = [name for name, value in (("RPC_URL", rpc_url), ("PRIVATE_KEY", private_key)) if not value]
    if missing:
        raise ConfigError(f"Make sure {' and '.join(missing)} {'is' if len(missing) == 1 else 'are'} set in .env")

    timeout_raw = (env.get("CONFIRMATION_TIMEOUT") or "").strip()
    try:
        timeout = float(timeout_raw) if timeout_raw else float(XOS.CONFIRMATION_TIMEOUT)
    except ValueError:
        raise ConfigError(f"CONFIRMATION_TIMEOUT must be a number of seconds, got {timeout_raw!r}")
    if not math.isfinite(timeout) or timeout <= 0:
        raise ConfigError("CONFIRMATION_TIMEOUT must be a positive, finite number of seconds")

    log_level = (env.get("LOG_LEVEL") or "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL, got {log_level!r}")

    explorer = (env.get("EXPLORER_URL") or "").strip().rstrip("/") or None

    return Settings(
        rpc_url=rpc_url,
        private_key=private_key,
        confirmation_timeout=timeout,
        explorer_url=explorer,
        log_level=log_level,
    )
