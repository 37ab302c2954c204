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

"""Inputs ready to be added to a PSBT, one class per spendable script format.

Each variant knows which signing metadata a signer needs for it: the full
previous transaction for legacy inputs, the spent output for segwit ones,
plus the redeem script for nested segwit and the x-only internal key for
taproot.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

import coincurve  # type: ignore
from embit.hashes import hash160  # type: ignore

from psbtbuilder.classifier import ScriptFormat, classify
from psbtbuilder.constants import DEFAULT_TX_SEQUENCE
from psbtbuilder.datasource import Datasource, UTXORef, generate_identity
from psbtbuilder.exceptions import (
    DatasourceError,
    InvalidPublicKey,
    MalformedTransaction,
)
from psbtbuilder.psbt import PSBTInput
from psbtbuilder.script import Script
from psbtbuilder.transactions import Transaction, TxInput, TxOutput
from psbtbuilder.utils import to_bytes

logger = logging.getLogger(__name__)


def compressed_public_key(public_key: str | bytes) -> bytes:
    """Returns the 33 byte SEC encoding of a public key

    Raises
    ------
    InvalidPublicKey
        if the key is not a point on secp256k1
    """
    try:
        key = coincurve.PublicKey(to_bytes(public_key))
    except (ValueError, TypeError) as e:
        raise InvalidPublicKey(public_key, str(e)) from e
    return key.format(compressed=True)


def x_only_public_key(public_key: str | bytes) -> bytes:
    """Returns the 32 byte x-only key used as taproot internal key"""
    return compressed_public_key(public_key)[1:33]


@dataclass(frozen=True, kw_only=True)
class _SpendableInput:
    txid: str
    output_index: int
    value_sats: int
    script_pubkey: bytes
    sighash_type: Optional[int] = None

    format = ScriptFormat.UNKNOWN

    @property
    def identity(self) -> str:
        return generate_identity(self.txid, self.output_index)

    def to_tx_input(self, sequence: bytes = DEFAULT_TX_SEQUENCE) -> TxInput:
        return TxInput(self.txid, self.output_index, sequence=sequence)

    def to_psbt_input(self) -> PSBTInput:
        psbt_input = PSBTInput()
        self.apply_to(psbt_input)
        return psbt_input

    def apply_to(self, psbt_input: PSBTInput) -> None:
        if self.sighash_type is not None:
            psbt_input.sighash_type = self.sighash_type

    def _witness_utxo(self) -> TxOutput:
        return TxOutput(self.value_sats, Script.from_raw(self.script_pubkey))


@dataclass(frozen=True, kw_only=True)
class LegacyInput(_SpendableInput):
    """p2pkh input; signers need the whole previous transaction"""

    previous_transaction: Transaction

    format = ScriptFormat.LEGACY

    def apply_to(self, psbt_input: PSBTInput) -> None:
        psbt_input.non_witness_utxo = self.previous_transaction
        super().apply_to(psbt_input)


@dataclass(frozen=True, kw_only=True)
class SegwitInput(_SpendableInput):
    """p2wpkh input"""

    format = ScriptFormat.SEGWIT

    def apply_to(self, psbt_input: PSBTInput) -> None:
        psbt_input.witness_utxo = self._witness_utxo()
        super().apply_to(psbt_input)


@dataclass(frozen=True, kw_only=True)
class NestedSegwitInput(_SpendableInput):
    """p2sh-p2wpkh input; redeem_script is OP_0 <hash160(pubkey)>"""

    redeem_script: bytes

    format = ScriptFormat.P2SH_P2WPKH

    def apply_to(self, psbt_input: PSBTInput) -> None:
        psbt_input.witness_utxo = self._witness_utxo()
        psbt_input.redeem_script = Script.from_raw(self.redeem_script)
        super().apply_to(psbt_input)


@dataclass(frozen=True, kw_only=True)
class TaprootInput(_SpendableInput):
    """p2tr key path input"""

    internal_key: bytes

    format = ScriptFormat.TAPROOT

    def apply_to(self, psbt_input: PSBTInput) -> None:
        psbt_input.witness_utxo = self._witness_utxo()
        psbt_input.tap_internal_key = self.internal_key
        super().apply_to(psbt_input)


BuiltInput = Union[LegacyInput, SegwitInput, NestedSegwitInput, TaprootInput]


async def build_input(
    utxo: UTXORef,
    public_key: str | bytes,
    network: Optional[str],
    datasource: Optional[Datasource],
    sighash_type: Optional[int] = None,
) -> BuiltInput:
    """Turns a UTXO of the payer into an input carrying its signing metadata

    Raises
    ------
    MalformedTransaction
        if the UTXO script is not a supported format
    InvalidPublicKey
        if public_key cannot be parsed
    DatasourceError
        if a legacy input's previous transaction cannot be fetched
    """
    fmt = classify(utxo.script_pubkey, network)
    common = dict(
        txid=utxo.txid,
        output_index=utxo.output_index,
        value_sats=utxo.value_sats,
        script_pubkey=utxo.script_pubkey,
        sighash_type=sighash_type,
    )

    if fmt is ScriptFormat.LEGACY:
        if datasource is None:
            raise DatasourceError("Legacy inputs need a datasource", utxo.txid)
        logger.debug("fetching previous transaction %s", utxo.txid)
        raw = await datasource.get_transaction(utxo.txid, hex=True)
        try:
            previous = Transaction.from_raw(raw)
        except ValueError as e:
            raise DatasourceError(
                f"Unparseable transaction {utxo.txid}: {e}", utxo.txid
            ) from e
        if previous.get_txid() != utxo.txid.lower():
            raise DatasourceError(
                f"Datasource returned {previous.get_txid()} for {utxo.txid}",
                utxo.txid,
            )
        return LegacyInput(previous_transaction=previous, **common)

    if fmt is ScriptFormat.SEGWIT:
        return SegwitInput(**common)

    if fmt is ScriptFormat.P2SH_P2WPKH:
        key_hash = hash160(compressed_public_key(public_key))
        return NestedSegwitInput(redeem_script=b"\x00\x14" + key_hash, **common)

    if fmt is ScriptFormat.TAPROOT:
        return TaprootInput(internal_key=x_only_public_key(public_key), **common)

    raise MalformedTransaction(
        f"Unsupported script type for UTXO {utxo.identity}: {utxo.script_pubkey.hex()}"
    )
