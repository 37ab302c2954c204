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

__version__ = "0.1.0"

from psbtbuilder.setup import setup, get_network

from psbtbuilder.classifier import (
    ScriptFormat,
    PaymentType,
    classify,
    payment_type,
    address_to_script_pubkey,
    script_pubkey_to_address,
)

from psbtbuilder.fee import FeeEstimator

from psbtbuilder.builder import (
    PSBTBuilder,
    TargetOutput,
    InputsToSign,
    create_psbt,
)

from psbtbuilder.datasource import Datasource, UTXORef

from psbtbuilder.psbt import PSBT, PSBTInput, PSBTOutput

from psbtbuilder.script import Script

from psbtbuilder.transactions import Transaction, TxInput, TxOutput

from psbtbuilder import exceptions

__all__ = [
    'setup',
    'get_network',
    'ScriptFormat',
    'PaymentType',
    'classify',
    'payment_type',
    'address_to_script_pubkey',
    'script_pubkey_to_address',
    'FeeEstimator',
    'PSBTBuilder',
    'TargetOutput',
    'InputsToSign',
    'create_psbt',
    'Datasource',
    'UTXORef',
    'PSBT',
    'PSBTInput',
    'PSBTOutput',
    'Script',
    'Transaction',
    'TxInput',
    'TxOutput',
    'exceptions',
]
