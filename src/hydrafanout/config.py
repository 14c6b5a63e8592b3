"""
hydrafanout/config.py

Configuration constants and data classes for hydrafanout.
"""

import os
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Optional, Union, TYPE_CHECKING

from .errors import ValidationError

if TYPE_CHECKING:
    from .protocol.retry import RetryPolicy


# Total shares a new wallet is created with
DEFAULT_TOTAL_SHARES = 100

# Minimum token holding for a member to receive shares at creation time
MIN_TOKEN_REQUIREMENT = Decimal(100000)

# Tolerance when checking fractional share totals
SHARE_EPSILON = Decimal("0.000000001")

# Native unit conversion
LAMPORTS_PER_SOL = 1_000_000_000
NATIVE_DECIMALS = 9

# Batching defaults (members per transaction, transactions per signing prompt)
MEMBERS_PER_BATCH = 5
BATCHES_PER_SIGNING = 20

# Retry defaults for a single transaction
RETRY_BUDGET = 3
RETRY_DELAY_MS = 1000

# Network labels and the environment variables holding their RPC endpoints
MAINNET_LABEL = "mainnet-beta"
DEVNET_LABEL = "devnet"
RPC_ENV_VARS = {
    MAINNET_LABEL: "HYDRAFANOUT_RPC_URL",
    DEVNET_LABEL: "HYDRAFANOUT_RPC_DEVNET",
}

# base58 alphabet (no 0, O, I, l); ed25519 public keys encode to 32-44 chars
_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def is_valid_address(address: object) -> bool:
    """Check that a value looks like a base58 account address."""
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address))


def short_address(address: str, chars: int = 5) -> str:
    """Shorten an address for log lines: 'Abcde...vwxyz'."""
    if len(address) <= chars * 2:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def to_base_units(amount: Union[Decimal, int, str], decimals: int = NATIVE_DECIMALS) -> int:
    """Convert a decimal amount to integer base units (truncating)."""
    scaled = Decimal(amount).scaleb(decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(units: int, decimals: int = NATIVE_DECIMALS) -> Decimal:
    """Convert integer base units to a decimal amount."""
    return Decimal(units).scaleb(-decimals)


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Limits for one orchestration run.

    Usage:
        config = OrchestratorConfig(max_operations_per_batch=5)
        config.validate()
    """

    # Member operations per transaction (a fee operation is appended)
    max_operations_per_batch: int = MEMBERS_PER_BATCH

    # Transactions per signing session (one anchor, one signing prompt)
    max_batches_per_session: int = BATCHES_PER_SIGNING

    # Attempts per transaction and delay between them
    retry_budget: int = RETRY_BUDGET
    retry_delay_ms: int = RETRY_DELAY_MS

    # Fractional digits used when computing expected payout amounts
    amount_decimals: int = NATIVE_DECIMALS

    def validate(self) -> None:
        """Raise ValidationError if any limit is out of range."""
        if self.max_operations_per_batch < 1:
            raise ValidationError("max_operations_per_batch must be at least 1")
        if self.max_batches_per_session < 1:
            raise ValidationError("max_batches_per_session must be at least 1")
        if self.retry_budget < 1:
            raise ValidationError("retry_budget must be at least 1")
        if self.retry_delay_ms < 0:
            raise ValidationError("retry_delay_ms cannot be negative")
        if self.amount_decimals < 0:
            raise ValidationError("amount_decimals cannot be negative")

    @property
    def retry_delay(self) -> float:
        """Retry delay in seconds."""
        return self.retry_delay_ms / 1000.0

    def retry_policy(self) -> "RetryPolicy":
        """Build the retry policy described by this config."""
        from .protocol.retry import RetryPolicy
        return RetryPolicy(max_attempts=self.retry_budget, delay=self.retry_delay)


@dataclass(frozen=True)
class NetworkConfig:
    """
    Which ledger network to talk to.

    Built once by the caller and handed to the coordinator; it is never
    swapped while a run is in progress.
    """

    label: str = MAINNET_LABEL
    rpc_url: str = ""
    commitment: str = "confirmed"

    @property
    def is_mainnet(self) -> bool:
        return self.label == MAINNET_LABEL

    @classmethod
    def from_env(cls, label: str = MAINNET_LABEL, commitment: str = "confirmed") -> "NetworkConfig":
        """Create a config whose RPC endpoint comes from the environment."""
        env_var = RPC_ENV_VARS.get(label)
        if env_var is None:
            raise ValidationError(f"Unknown network label: {label}")
        rpc_url = os.environ.get(env_var, "")
        if not rpc_url:
            raise ValidationError(f"{env_var} is not set")
        return cls(label=label, rpc_url=rpc_url, commitment=commitment)

    @classmethod
    def devnet(cls, rpc_url: Optional[str] = None) -> "NetworkConfig":
        """Create a devnet config, reading the endpoint from the environment if not given."""
        if rpc_url:
            return cls(label=DEVNET_LABEL, rpc_url=rpc_url)
        return cls.from_env(DEVNET_LABEL)
