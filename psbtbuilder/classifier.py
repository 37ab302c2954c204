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

"""Maps output scripts and addresses to the script formats the fee
estimator knows how to size.

Base58 addresses are checked against the version bytes of the network
(testnet, signet and regtest share them) and bech32 addresses against the
network's human readable part, so a ``tb1`` address is not valid on regtest
and a ``bcrt1`` address is not valid on testnet.
"""

from enum import Enum
from typing import Optional

from base58check import b58decode, b58encode  # type: ignore
from embit import bech32  # type: ignore

from psbtbuilder.constants import (
    NETWORK_P2PKH_PREFIXES,
    NETWORK_P2SH_PREFIXES,
    NETWORK_SEGWIT_PREFIXES,
)
from psbtbuilder.script import Script
from psbtbuilder.setup import resolve_network
from psbtbuilder.utils import hash256


class ScriptFormat(str, Enum):
    """Script families with a known spend size"""

    LEGACY = "legacy"
    SEGWIT = "segwit"
    P2SH_P2WPKH = "p2sh-p2wpkh"
    TAPROOT = "taproot"
    UNKNOWN = "unknown"


class PaymentType(str, Enum):
    """The concrete decoded payment template"""

    P2PKH = "p2pkh"
    P2SH = "p2sh"
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"
    P2TR = "p2tr"
    UNKNOWN = "unknown"


PAYMENT_TO_FORMAT = {
    PaymentType.P2PKH: ScriptFormat.LEGACY,
    # any p2sh is assumed to wrap a p2wpkh
    PaymentType.P2SH: ScriptFormat.P2SH_P2WPKH,
    PaymentType.P2WPKH: ScriptFormat.SEGWIT,
    PaymentType.P2TR: ScriptFormat.TAPROOT,
}


def _decode_base58(address: str, network: str) -> Optional[bytes]:
    try:
        data_checksum = b58decode(address.encode("utf-8"))
    except (ValueError, TypeError):
        return None
    if len(data_checksum) != 25:
        return None
    data, checksum = data_checksum[:-4], data_checksum[-4:]
    if hash256(data)[:4] != checksum:
        return None

    prefix, h160 = data[:1], data[1:]
    if prefix == NETWORK_P2PKH_PREFIXES[network]:
        return b"\x76\xa9\x14" + h160 + b"\x88\xac"
    if prefix == NETWORK_P2SH_PREFIXES[network]:
        return b"\xa9\x14" + h160 + b"\x87"
    return None


def _decode_segwit(address: str, network: str) -> Optional[bytes]:
    hrp = NETWORK_SEGWIT_PREFIXES[network]
    if not address.lower().startswith(hrp + "1"):
        return None
    try:
        version, program = bech32.decode(hrp, address)
    except (ValueError, TypeError):
        return None
    if version is None:
        return None
    version_op = 0x00 if version == 0 else 0x50 + version
    return bytes([version_op, len(program)]) + bytes(program)


def address_to_script_pubkey(address: str, network: Optional[str] = None) -> bytes:
    """Decodes an address into the output script it pays to

    Raises
    ------
    ValueError
        if the address is not valid for the network
    """
    network = resolve_network(network)
    if not isinstance(address, str) or not address:
        raise ValueError(f"Invalid address: {address!r}")
    script = _decode_segwit(address, network)
    if script is None:
        script = _decode_base58(address, network)
    if script is None:
        raise ValueError(f"Invalid {network} address: {address}")
    return script


def script_pubkey_to_address(
    script: str | bytes | Script, network: Optional[str] = None
) -> Optional[str]:
    """Returns the address of a standard output script or None"""
    network = resolve_network(network)
    script_obj = _as_script(script)
    if script_obj is None:
        return None
    raw = script_obj.to_bytes()

    if script_obj.is_p2pkh():
        data = NETWORK_P2PKH_PREFIXES[network] + raw[3:23]
    elif script_obj.is_p2sh():
        data = NETWORK_P2SH_PREFIXES[network] + raw[2:22]
    else:
        program = script_obj.witness_program()
        if program is None:
            return None
        version, witprog = program
        return bech32.encode(NETWORK_SEGWIT_PREFIXES[network], version, witprog)

    return b58encode(data + hash256(data)[:4]).decode("utf-8")


def _as_script(value) -> Optional[Script]:
    if isinstance(value, Script):
        return value
    if isinstance(value, (bytes, bytearray)):
        return Script.from_raw(bytes(value))
    if isinstance(value, str):
        try:
            return Script.from_raw(bytes.fromhex(value))
        except ValueError:
            return None
    return None


def _resolve_script(value, network: Optional[str]) -> Optional[Script]:
    if isinstance(value, str):
        try:
            return Script.from_raw(address_to_script_pubkey(value, network))
        except ValueError:
            pass
    return _as_script(value)


def payment_type(
    script_or_address: str | bytes | Script, network: Optional[str] = None
) -> PaymentType:
    """Returns the payment template of a script, hex script or address"""
    try:
        script = _resolve_script(script_or_address, network)
    except ValueError:
        # unsupported network name
        return PaymentType.UNKNOWN
    if script is None:
        return PaymentType.UNKNOWN
    return PaymentType(script.get_script_type())


def classify(
    script_or_address: str | bytes | Script, network: Optional[str] = None
) -> ScriptFormat:
    """Returns the ScriptFormat of a script, hex script or address.

    Never raises; anything that is not p2pkh, p2sh, p2wpkh or p2tr is
    ScriptFormat.UNKNOWN.
    """
    return PAYMENT_TO_FORMAT.get(
        payment_type(script_or_address, network), ScriptFormat.UNKNOWN
    )
