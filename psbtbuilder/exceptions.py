# Copyright (C) 2018-2025 The psbt-builder developers
#
# This file is part of psbt-builder
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of psbt-builder, including this file, may be copied, modified,
# propagated, or distributed except according to the terms contained in the
# LICENSE file.

"""Errors raised while estimating fees and assembling PSBTs.

Every error carries the values a caller needs to decide whether to retry
with different parameters (shortfall, offending script, fee rate).
"""

from typing import Any, Optional

from psbtbuilder.constants import DUST_FLOOR, MAX_FEE_CEILING


class PSBTBuilderError(Exception):
    """Base class for all psbt-builder errors"""


class InvalidFeeRate(PSBTBuilderError, ValueError):
    """Fee rate is negative or not a whole number of sats/vbyte"""

    def __init__(self, fee_rate: Any) -> None:
        self.fee_rate = fee_rate
        super().__init__(f"Invalid fee rate: {fee_rate!r}")


class InvalidPublicKey(PSBTBuilderError, ValueError):
    """Public key is not a valid secp256k1 point"""

    def __init__(self, public_key: Any, reason: str = "") -> None:
        self.public_key = public_key
        message = f"Invalid public key: {public_key!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class MalformedTransaction(PSBTBuilderError):
    """The transaction skeleton cannot be sized or assembled"""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class InvalidScript(MalformedTransaction):
    """An input has no resolvable previous output script"""

    def __init__(self, input_index: int, script: Optional[bytes] = None) -> None:
        self.input_index = input_index
        self.script = script
        super().__init__(f"Invalid script for input {input_index}")


class DustOutput(PSBTBuilderError):
    """Total output amount is below the dust floor"""

    def __init__(self, amount: int, minimum: int = DUST_FLOOR) -> None:
        self.amount = amount
        self.minimum = minimum
        super().__init__(
            f"Output amount too low ({amount} sats). Minimum output amount "
            f"needs to be {minimum} sats"
        )


class FeeCalculationError(PSBTBuilderError):
    """Computed fee exceeds the hard ceiling"""

    def __init__(self, fee: int, maximum: int = MAX_FEE_CEILING) -> None:
        self.fee = fee
        self.maximum = maximum
        super().__init__(
            f"Error while calculating fees: {fee} sats exceeds the maximum "
            f"of {maximum} sats"
        )


class InsufficientFunds(PSBTBuilderError):
    """The datasource has no more UTXOs and change is still negative"""

    def __init__(self, shortfall: int, address: Optional[str] = None) -> None:
        self.shortfall = shortfall
        self.address = address
        super().__init__(
            f"Insufficient balance. Decrease the output amount by {shortfall} sats"
        )


class DatasourceError(PSBTBuilderError):
    """The datasource returned unusable data"""

    def __init__(self, message: str, txid: Optional[str] = None) -> None:
        self.txid = txid
        super().__init__(message)


class NotPrepared(PSBTBuilderError):
    """PSBT requested before a successful prepare()"""

    def __init__(self) -> None:
        super().__init__("PSBT is not ready. Call prepare() first")
