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

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

from psbtbuilder.utils import h_to_b


def generate_identity(txid: str, index: int) -> str:
    """Returns the "txid:index" identity of an outpoint"""
    return f"{txid}:{index}"


def outpoint_to_id_format(outpoint: str) -> str:
    """Converts "txid:index" (or a bare txid) to the "txidiN" id format"""
    if ":" in outpoint:
        return outpoint.replace(":", "i", 1)
    return outpoint if "i" in outpoint else f"{outpoint}i0"


@dataclass(frozen=True)
class UTXORef:
    """A spendable output as reported by a datasource

    Attributes
    ----------
    txid : str
    output_index : int
    value_sats : int
    script_pubkey : bytes
    address : str
        optional, informational only
    """

    txid: str
    output_index: int
    value_sats: int
    script_pubkey: bytes
    address: Optional[str] = None

    def __post_init__(self):
        if len(self.txid) != 64:
            raise ValueError(f"Invalid txid: {self.txid}")
        if self.value_sats < 0:
            raise ValueError(f"Negative UTXO value: {self.value_sats}")

    @property
    def identity(self) -> str:
        return generate_identity(self.txid, self.output_index)

    @classmethod
    def from_dict(cls, data: dict) -> "UTXORef":
        """Builds a UTXORef from the JSON-RPC spendables shape

        {"txid", "n", "sats", "scriptPubKey": {"hex", "address"}}
        """
        script = data["scriptPubKey"]
        return cls(
            txid=data["txid"],
            output_index=int(data["n"]),
            value_sats=int(data["sats"]),
            script_pubkey=h_to_b(script["hex"]),
            address=script.get("address"),
        )


class Datasource(ABC):
    """Where the builder finds spendable outputs and previous transactions"""

    @abstractmethod
    async def get_spendables(
        self,
        address: str,
        min_value_sats: int,
        exclude: Iterable[str] = (),
    ) -> list[UTXORef]:
        """Returns UTXOs of address worth at least min_value_sats in total,
        skipping the "txid:index" identities in exclude. An empty list means
        nothing else can be spent."""

    @abstractmethod
    async def get_transaction(self, txid: str, hex: bool = True) -> bytes:
        """Returns the serialized transaction txid"""
