"""Error taxonomy for the wrap/unwrap tool."""


class WrapperError(Exception):
    """Base class for every failure the tool reports to the user."""


class ConfigError(WrapperError):
    """A required setting is missing or malformed. Fatal at startup."""


class ChainQueryError(WrapperError):
    """A balance or contract view read failed."""


class AmountConversionError(WrapperError, ValueError):
    """The human amount cannot be expressed in wei."""


class ValidationError(WrapperError, ValueError):
    """User input is out of bounds. Raised before any state-changing call."""


class InsufficientBalanceError(ValidationError):
    """The live balance no longer covers the requested amount."""

    def __init__(self, message: str, available: int):
        super().__init__(message)
        self.available = available


class EstimationError(WrapperError):
    """The node rejected the gas estimate. Nothing was sent."""


class SubmissionError(WrapperError):
    """
    Sending the transaction failed.

    ``broadcast_possible`` is True when the signed transaction may have reached
    the network anyway (timeouts, dropped connections), so the outcome is unknown.
    """

    def __init__(self, message: str, broadcast_possible: bool = True):
        super().__init__(message)
        self.broadcast_possible = broadcast_possible


class ConfirmationTimeoutError(WrapperError):
    """The transaction was sent but the required depth was not observed in time."""

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash


class TransactionRevertedError(WrapperError):
    """The transaction was mined with status 0."""

    def __init__(self, message: str, tx_hash: str, block_number: int):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.block_number = block_number
