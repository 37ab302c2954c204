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

import logging
import math
from decimal import Decimal
from numbers import Number
from typing import Any, Optional

from psbtbuilder.classifier import ScriptFormat, classify
from psbtbuilder.constants import (
    HEADER_WEIGHTS,
    INPUT_WEIGHTS,
    MAX_FEE_CEILING,
    OUTPUT_WEIGHTS,
    WITNESS_HEADER_SIZE,
    WITNESS_WEIGHTS,
)
from psbtbuilder.exceptions import (
    FeeCalculationError,
    InvalidFeeRate,
    InvalidScript,
    MalformedTransaction,
)
from psbtbuilder.psbt import PSBT
from psbtbuilder.setup import resolve_network

logger = logging.getLogger(__name__)


def validate_fee_rate(fee_rate: Any) -> int:
    """Returns fee_rate as an int of sats/vbyte

    Integral floats and Decimals are accepted (2.0 -> 2); negative,
    fractional, boolean and non-finite values raise InvalidFeeRate.
    """
    if isinstance(fee_rate, bool) or not isinstance(fee_rate, Number):
        raise InvalidFeeRate(fee_rate)
    if isinstance(fee_rate, int):
        value = fee_rate
    elif isinstance(fee_rate, (float, Decimal)):
        # Decimal signaling NaN cannot go through math.isfinite
        if isinstance(fee_rate, Decimal):
            finite = fee_rate.is_finite()
        else:
            finite = math.isfinite(fee_rate)
        if not finite or fee_rate != int(fee_rate):
            raise InvalidFeeRate(fee_rate)
        value = int(fee_rate)
    else:
        raise InvalidFeeRate(fee_rate)
    if value < 0:
        raise InvalidFeeRate(fee_rate)
    return value


class FeeEstimator:
    """Estimates the network fee of an unsigned transaction

    Sizes come from a per script format table rather than from serialized
    signatures, so a PSBT can be priced before it is signed.

    Attributes
    ----------
    fee_rate : int
        sats per virtual byte
    network : str
    psbt : PSBT
        the transaction skeleton to price
    witness : list (bytes)
        optional witness items replacing the default witness size
    fee : int
    virtual_size : int
    weight : int

    Methods
    -------
    calculate_network_fee()
        computes and returns the fee in sats
    compute_fee()
        alias of calculate_network_fee()

    Raises
    ------
    InvalidFeeRate
        if the fee rate is negative or not a whole number
    MalformedTransaction
        if the skeleton has no inputs or outputs, or a script of unknown format
    FeeCalculationError
        if the fee exceeds the ceiling
    """

    def __init__(
        self,
        fee_rate: int | float | Decimal,
        network: Optional[str] = None,
        psbt: Optional[PSBT] = None,
        witness: Optional[list[bytes]] = None,
    ) -> None:
        self.fee_rate = validate_fee_rate(fee_rate)
        self.network = resolve_network(network)
        self.psbt = psbt if psbt is not None else PSBT()
        self.witness = witness
        self.fee = 0
        self.virtual_size = 0
        self.weight = 0

    @property
    def data(self) -> dict:
        return {
            "fee": self.fee,
            "virtual_size": self.virtual_size,
            "weight": self.weight,
        }

    def calculate_network_fee(self) -> int:
        input_formats = self._input_formats()
        output_formats = self._output_formats()

        base = max(HEADER_WEIGHTS[fmt] for fmt in input_formats)
        base += sum(INPUT_WEIGHTS[fmt] for fmt in input_formats)
        base += sum(OUTPUT_WEIGHTS[fmt] for fmt in output_formats)

        if self.witness is not None:
            witness_size = sum(len(item) for item in self.witness)
        else:
            witness_size = sum(WITNESS_WEIGHTS[fmt] for fmt in input_formats)
        if witness_size > 0:
            witness_size += WITNESS_HEADER_SIZE

        weight = base + witness_size
        virtual_size = math.ceil(weight / 4)
        fee = virtual_size * self.fee_rate

        logger.debug(
            "weight=%d virtual_size=%d fee=%d (rate %d)",
            weight,
            virtual_size,
            fee,
            self.fee_rate,
        )

        if fee > MAX_FEE_CEILING:
            raise FeeCalculationError(fee)

        self.weight = weight
        self.virtual_size = virtual_size
        self.fee = fee
        return fee

    compute_fee = calculate_network_fee

    def _input_formats(self) -> list[ScriptFormat]:
        if not self.psbt.tx.inputs:
            raise MalformedTransaction("Transaction has no inputs")

        formats = []
        for index in range(len(self.psbt.tx.inputs)):
            script = self.psbt.input_script(index)
            if script is None:
                raise InvalidScript(index)
            fmt = classify(script, self.network)
            if fmt is ScriptFormat.UNKNOWN:
                raise MalformedTransaction(
                    f"Unsupported script type for input {index}: {script.to_hex()}"
                )
            formats.append(fmt)
        return formats

    def _output_formats(self) -> list[ScriptFormat]:
        if not self.psbt.tx.outputs:
            raise MalformedTransaction("Transaction has no outputs")

        formats = []
        for index, output in enumerate(self.psbt.tx.outputs):
            fmt = classify(output.script_pubkey, self.network)
            if fmt is ScriptFormat.UNKNOWN:
                raise MalformedTransaction(
                    f"Unsupported script type for output {index}: "
                    f"{output.script_pubkey.to_hex()}"
                )
            formats.append(fmt)
        return formats
