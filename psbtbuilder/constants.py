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

# signet and regtest re-use the testnet base58 version bytes
NETWORK_P2PKH_PREFIXES = {
    "mainnet": b"\x00",
    "signet": b"\x6f",
    "testnet": b"\x6f",
    "regtest": b"\x6f",
}

NETWORK_P2SH_PREFIXES = {
    "mainnet": b"\x05",
    "signet": b"\xc4",
    "testnet": b"\xc4",
    "regtest": b"\xc4",
}

NETWORK_SEGWIT_PREFIXES = {
    "mainnet": "bc",
    "signet": "tb",
    "testnet": "tb",
    "regtest": "bcrt",
}


# Constants related to transaction signature types
SIGHASH_SINGLE = 0x03
SIGHASH_ANYONECANPAY = 0x80


# Constants for sequence and locktime
DEFAULT_TX_LOCKTIME = b"\x00\x00\x00\x00"

DEFAULT_TX_SEQUENCE = b"\xff\xff\xff\xff"
# BIP-125 signalling: any sequence below 0xfffffffe
REPLACE_BY_FEE_SEQUENCE = b"\xfd\xff\xff\xff"

DEFAULT_TX_VERSION = b"\x02\x00\x00\x00"


# outputs below this value are not relayed by the majority of miners
DUST_FLOOR = 600

# no estimate may ever exceed 0.05 BTC
MAX_FEE_CEILING = 5000000


# Builder constants
INSTANT_TRADE_SELLER_INPUT_INDEX = 2

# fee recomputations performed once change stops being negative
CONVERGENCE_PASSES = 2

# segwit marker and flag bytes
WITNESS_HEADER_SIZE = 2

# Per script format sizes in weight units (4 WU per non-witness vbyte).
# Headers: 10.5 vB for native segwit/taproot, 10 vB for legacy and p2sh.
INPUT_WEIGHTS = {
    "taproot": 168,
    "segwit": 164,
    "p2sh-p2wpkh": 256,
    "legacy": 592,
}

OUTPUT_WEIGHTS = {
    "taproot": 172,
    "segwit": 124,
    "p2sh-p2wpkh": 128,
    "legacy": 136,
}

HEADER_WEIGHTS = {
    "taproot": 42,
    "segwit": 42,
    "p2sh-p2wpkh": 40,
    "legacy": 40,
}

# default witness bytes of a single-key spend
WITNESS_WEIGHTS = {
    "taproot": 66,
    "segwit": 105,
    "p2sh-p2wpkh": 105,
    "legacy": 0,
}
