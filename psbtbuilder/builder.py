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

"""Funds target outputs from the UTXOs of a single payer address.

The builder asks its datasource for spendables until inputs cover the
outputs plus the network fee, then re-prices the transaction a bounded
number of times so that adding or dropping the change output is reflected
in the fee. Legs of a counterparty (instant trades) can be injected at
fixed indexes before preparing.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Union

from psbtbuilder.classifier import address_to_script_pubkey
from psbtbuilder.constants import (
    CONVERGENCE_PASSES,
    DEFAULT_TX_SEQUENCE,
    DUST_FLOOR,
    INSTANT_TRADE_SELLER_INPUT_INDEX,
    MAX_FEE_CEILING,
    REPLACE_BY_FEE_SEQUENCE,
    SIGHASH_ANYONECANPAY,
    SIGHASH_SINGLE,
)
from psbtbuilder.datasource import Datasource, UTXORef
from psbtbuilder.exceptions import (
    DatasourceError,
    DustOutput,
    FeeCalculationError,
    InsufficientFunds,
    MalformedTransaction,
    NotPrepared,
)
from psbtbuilder.fee import FeeEstimator
from psbtbuilder.inputs import BuiltInput, build_input, x_only_public_key
from psbtbuilder.psbt import PSBT, PSBTInput, PSBTOutput
from psbtbuilder.script import Script
from psbtbuilder.transactions import Transaction, TxInput, TxOutput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetOutput:
    """An output the payer wants to fund"""

    address: str
    value_sats: int

    def __post_init__(self):
        if isinstance(self.value_sats, bool) or not isinstance(self.value_sats, int):
            raise TypeError("Output value needs to be in satoshis as an integer")
        if self.value_sats < 0:
            raise ValueError(f"Negative output value: {self.value_sats}")

    @classmethod
    def from_dict(cls, data: dict) -> "TargetOutput":
        return cls(address=data["address"], value_sats=data["value"])


@dataclass
class InjectedInput:
    """A counterparty input spliced in verbatim at injection_index"""

    injection_index: int
    tx_input: TxInput
    value_sats: int
    psbt_input: PSBTInput


@dataclass
class InjectedOutput:
    """A counterparty output spliced in at injection_index or the next free slot"""

    injection_index: int
    tx_output: TxOutput
    value_sats: int
    psbt_output: PSBTOutput


@dataclass
class InputsToSign:
    """Which input indexes the payer signs, and under which sighash"""

    address: str
    signing_indexes: list[int]
    sighash: Optional[int] = None


@dataclass
class BuilderState:
    inputs: list[BuiltInput] = field(default_factory=list)
    injected_inputs: list[InjectedInput] = field(default_factory=list)
    outputs: list[TargetOutput] = field(default_factory=list)
    injected_outputs: list[InjectedOutput] = field(default_factory=list)
    input_amount: int = 0
    output_amount: int = 0
    change_amount: int = 0
    fee: int = 0
    virtual_size: int = 0
    weight: int = 0
    exhausted: bool = False
    used_identities: set[str] = field(default_factory=set)
    utxos: list[UTXORef] = field(default_factory=list)


class PSBTBuilder(FeeEstimator):
    """Builds an unsigned PSBT paying target outputs from one address

    Attributes
    ----------
    address : str
        the payer address whose UTXOs fund the transaction
    public_key : str
        hex public key of the payer
    change_address : str
        where change goes; defaults to address
    datasource : Datasource
    auto_adjustment : bool
        fetch UTXOs and settle change; disabled for pre-built skeletons
    instant_trade_mode : bool
        reserve the counterparty input index
    rbf : bool
        signal replace-by-fee on the payer's inputs
    state : BuilderState

    Methods
    -------
    prepare()
        fetches inputs and converges fee and change (coroutine)
    inject_input(), inject_output()
        register counterparty legs before prepare()
    add_input(built_input)
        adds an already built input of the payer
    enable_rbf(), disable_rbf(), set_rbf(value)
    to_psbt(), to_hex(), to_base64()
    retrieve_selected_utxos(address, amount)
        keeps a single UTXO worth at least amount (coroutine)

    Raises
    ------
    DustOutput, InsufficientFunds, MalformedTransaction, InvalidFeeRate,
    FeeCalculationError, NotPrepared
    """

    def __init__(
        self,
        address: str,
        fee_rate: int | float | Decimal,
        outputs: Iterable[Union[TargetOutput, dict]],
        public_key: str,
        network: Optional[str] = None,
        change_address: Optional[str] = None,
        datasource: Optional[Datasource] = None,
        auto_adjustment: bool = True,
        instant_trade_mode: bool = False,
    ) -> None:
        super().__init__(fee_rate, network=network)
        self.address = address
        self.public_key = public_key
        # fail early on a key the inputs could not be built with
        x_only_public_key(public_key)
        self.change_address = change_address or address
        self.datasource = datasource
        self.auto_adjustment = auto_adjustment
        self.instant_trade_mode = instant_trade_mode
        self.rbf = True

        self.state = BuilderState(
            outputs=[
                o if isinstance(o, TargetOutput) else TargetOutput.from_dict(o)
                for o in outputs
            ]
        )
        # invalid addresses raise ValueError here rather than during prepare()
        self._output_scripts = [
            address_to_script_pubkey(o.address, self.network)
            for o in self.state.outputs
        ]
        self._change_script = address_to_script_pubkey(self.change_address, self.network)

        self._prepared = False
        self._owned_input_indexes: list[int] = []
        self._change_index: Optional[int] = None

    # -- public accessors -------------------------------------------------

    @property
    def data(self) -> dict:
        return {
            "fee": self.state.fee,
            "virtual_size": self.state.virtual_size,
            "weight": self.state.weight,
            "change_amount": self.state.change_amount,
            "input_amount": self.state.input_amount,
            "output_amount": self.state.output_amount,
        }

    @property
    def x_key(self) -> str:
        return x_only_public_key(self.public_key).hex()

    @property
    def inputs_to_sign(self) -> InputsToSign:
        injected = {leg.injection_index for leg in self.state.injected_inputs}
        indexes = [
            index
            for index in range(len(self.psbt.tx.inputs))
            if index not in injected
            and not (
                self.instant_trade_mode and index == INSTANT_TRADE_SELLER_INPUT_INDEX
            )
        ]
        sighash = None
        if self.instant_trade_mode and not self.auto_adjustment:
            sighash = SIGHASH_SINGLE | SIGHASH_ANYONECANPAY
        return InputsToSign(self.address, indexes, sighash)

    def to_psbt(self) -> PSBT:
        if not self._prepared:
            raise NotPrepared()
        return self.psbt

    def to_hex(self) -> str:
        return self.to_psbt().to_hex()

    def to_base64(self) -> str:
        return self.to_psbt().to_base64()

    # -- RBF ---------------------------------------------------------------

    def set_rbf(self, value: bool) -> None:
        """Sets the sequence of every input owned by the payer

        Injected inputs keep the sequence their owner signed.
        """
        self.rbf = bool(value)
        for index in self._owned_input_indexes:
            self.psbt.set_input_sequence(index, self._input_sequence())
        logger.debug("rbf %s", "enabled" if self.rbf else "disabled")

    def enable_rbf(self) -> None:
        self.set_rbf(True)

    def disable_rbf(self) -> None:
        self.set_rbf(False)

    def _input_sequence(self) -> bytes:
        return REPLACE_BY_FEE_SEQUENCE if self.rbf else DEFAULT_TX_SEQUENCE

    # -- injection ----------------------------------------------------------

    def inject_input(
        self,
        injection_index: int,
        tx_input: TxInput,
        value_sats: int,
        psbt_input: Optional[PSBTInput] = None,
    ) -> None:
        """Reserves injection_index for a counterparty input

        Raises
        ------
        MalformedTransaction
            if the index is negative or already reserved
        """
        if injection_index < 0:
            raise MalformedTransaction(f"Invalid injection index {injection_index}")
        if any(leg.injection_index == injection_index for leg in self.state.injected_inputs):
            raise MalformedTransaction(
                f"Input index {injection_index} is already reserved"
            )
        self.state.injected_inputs.append(
            InjectedInput(
                injection_index,
                tx_input,
                value_sats,
                psbt_input if psbt_input is not None else PSBTInput(),
            )
        )
        # counted once, when the leg is registered
        self.state.input_amount += value_sats
        logger.debug("injected input at %d worth %d sats", injection_index, value_sats)

    def inject_output(
        self,
        injection_index: int,
        tx_output: TxOutput,
        value_sats: Optional[int] = None,
        psbt_output: Optional[PSBTOutput] = None,
    ) -> None:
        """Asks for a counterparty output at injection_index (or the next free one)"""
        if injection_index < 0:
            raise MalformedTransaction(f"Invalid injection index {injection_index}")
        self.state.injected_outputs.append(
            InjectedOutput(
                injection_index,
                tx_output,
                tx_output.amount if value_sats is None else value_sats,
                psbt_output if psbt_output is not None else PSBTOutput(),
            )
        )
        logger.debug("injected output at %d", injection_index)

    def add_input(self, built_input: BuiltInput) -> None:
        """Adds an input of the payer built outside of prepare()"""
        if built_input.identity in self.state.used_identities:
            raise MalformedTransaction(f"Input {built_input.identity} already added")
        self.state.used_identities.add(built_input.identity)
        self.state.inputs.append(built_input)
        self.state.input_amount += built_input.value_sats

    # -- prepare --------------------------------------------------------------

    async def prepare(self) -> "PSBTBuilder":
        """Converges the builder to an unsigned PSBT

        Safe to call again; UTXOs already used are never added twice.
        """
        self._prepared = False
        self._calculate_output_amount()

        if not self.auto_adjustment:
            # pre-built skeleton: price it as is
            self._process()
            self.state.change_amount = 0
            self._prepared = True
            return self

        await self._retrieve_utxos()
        await self._prepare_inputs()
        await self._settle_change()

        passes = 0
        while passes < CONVERGENCE_PASSES:
            self._process()
            if await self._settle_change():
                # new inputs changed the skeleton, price it again
                continue
            passes += 1

        self._finalize()
        self._prepared = True
        return self

    def _calculate_output_amount(self) -> None:
        amount = sum(o.value_sats for o in self.state.outputs) + sum(
            leg.value_sats for leg in self.state.injected_outputs
        )
        self.state.output_amount = amount
        if amount < DUST_FLOOR:
            raise DustOutput(amount)

    def _outstanding_amount(self) -> int:
        if self.state.change_amount < 0:
            return -self.state.change_amount
        retrieved = sum(utxo.value_sats for utxo in self.state.utxos)
        return self.state.output_amount - retrieved

    async def _retrieve_utxos(
        self, address: Optional[str] = None, amount: Optional[int] = None
    ) -> None:
        amount_to_request = amount if amount and amount > 0 else self._outstanding_amount()
        if amount_to_request <= 0:
            return
        if self.datasource is None:
            raise DatasourceError("No datasource configured to fetch UTXOs")

        address = address or self.address
        exclude = sorted(
            {utxo.identity for utxo in self.state.utxos} | self.state.used_identities
        )
        logger.debug(
            "requesting %d sats from %s (%d excluded)",
            amount_to_request,
            address,
            len(exclude),
        )
        utxos = await self.datasource.get_spendables(address, amount_to_request, exclude)

        known = set(exclude)
        new_utxos = []
        for utxo in utxos:
            if utxo.identity in known:
                continue
            known.add(utxo.identity)
            new_utxos.append(utxo)

        logger.debug("datasource returned %d new utxos", len(new_utxos))
        if not new_utxos:
            self.state.exhausted = True
        self.state.utxos.extend(new_utxos)

    async def _prepare_inputs(self) -> None:
        pending = [
            utxo
            for utxo in self.state.utxos
            if utxo.identity not in self.state.used_identities
        ]
        if not pending:
            return

        # gather keeps retrieval order regardless of completion order
        built = await asyncio.gather(
            *(
                build_input(utxo, self.public_key, self.network, self.datasource)
                for utxo in pending
            )
        )
        for built_input in built:
            self.add_input(built_input)

    async def _settle_change(self) -> bool:
        """Fetches UTXOs until change is not negative

        Returns True when inputs were added.
        """
        added = False
        while True:
            state = self.state
            state.change_amount = state.input_amount - state.output_amount - state.fee
            if state.change_amount >= 0:
                return added
            if state.exhausted:
                raise InsufficientFunds(-state.change_amount, self.address)
            inputs_before = len(state.inputs)
            await self._retrieve_utxos()
            await self._prepare_inputs()
            added = added or len(state.inputs) > inputs_before

    def _process(self) -> None:
        """Assembles the skeleton and prices it"""
        self.psbt = self._assemble()
        self.calculate_network_fee()
        self.state.fee = self.fee
        self.state.virtual_size = self.virtual_size
        self.state.weight = self.weight
        logger.debug(
            "pass: inputs=%d outputs=%d fee=%d change=%d",
            self.state.input_amount,
            self.state.output_amount,
            self.state.fee,
            self.state.change_amount,
        )

    def _finalize(self) -> None:
        state = self.state
        leftover = state.input_amount - state.output_amount - state.fee

        if self._change_index is not None and leftover >= DUST_FLOOR:
            self.psbt.tx.outputs[self._change_index].amount = leftover
            state.change_amount = leftover
        else:
            if self._change_index is not None:
                # change dropped under the dust floor, price without it
                del self.psbt.tx.outputs[self._change_index]
                del self.psbt.outputs[self._change_index]
                self._change_index = None
                self.calculate_network_fee()
                state.virtual_size = self.virtual_size
                state.weight = self.weight
            elif leftover >= DUST_FLOOR:
                logger.warning(
                    "absorbing %d sats of leftover change into the fee", leftover
                )
            state.change_amount = 0
            state.fee = state.input_amount - state.output_amount

        if state.fee > MAX_FEE_CEILING:
            raise FeeCalculationError(state.fee)

    def _assemble(self) -> PSBT:
        psbt = PSBT(Transaction())
        self._owned_input_indexes = []

        input_slots: dict[int, tuple[TxInput, PSBTInput]] = {}
        for leg in self.state.injected_inputs:
            input_slots[leg.injection_index] = (TxInput.copy(leg.tx_input), leg.psbt_input)
        index = 0
        for built_input in self.state.inputs:
            while index in input_slots:
                index += 1
            input_slots[index] = (
                built_input.to_tx_input(self._input_sequence()),
                built_input.to_psbt_input(),
            )
            self._owned_input_indexes.append(index)

        output_slots: dict[int, tuple[TxOutput, PSBTOutput]] = {}
        for leg in self.state.injected_outputs:
            slot = leg.injection_index
            while slot in output_slots:
                slot += 1
            output_slots[slot] = (TxOutput.copy(leg.tx_output), leg.psbt_output)
        index = 0
        for target, script in zip(self.state.outputs, self._output_scripts):
            while index in output_slots:
                index += 1
            output_slots[index] = (
                TxOutput(target.value_sats, Script.from_raw(script)),
                PSBTOutput(),
            )

        for kind, slots in (("input", input_slots), ("output", output_slots)):
            if sorted(slots) != list(range(len(slots))):
                raise MalformedTransaction(
                    f"Injected {kind} indexes {sorted(slots)} leave gaps"
                )

        for i in range(len(input_slots)):
            tx_input, psbt_input = input_slots[i]
            psbt.tx.inputs.append(tx_input)
            psbt.inputs.append(psbt_input)
        for i in range(len(output_slots)):
            psbt.add_output(*output_slots[i])

        self._change_index = None
        if self.state.change_amount >= DUST_FLOOR:
            self._change_index = psbt.add_output(
                TxOutput(self.state.change_amount, Script.from_raw(self._change_script))
            )
        return psbt

    # -- marketplace helpers ------------------------------------------------

    async def retrieve_selected_utxos(self, address: str, amount: int) -> list[UTXORef]:
        """Keeps only the first retrieved UTXO of address worth at least amount"""
        if sum(utxo.value_sats for utxo in self.state.utxos) < amount:
            await self._retrieve_utxos(address, amount)
        selected = next(
            (utxo for utxo in self.state.utxos if utxo.value_sats >= amount), None
        )
        self.state.utxos = [selected] if selected else []
        return self.state.utxos


async def create_psbt(
    address: str,
    fee_rate: int | float | Decimal,
    outputs: list[Union[TargetOutput, dict]],
    public_key: str,
    datasource: Datasource,
    network: Optional[str] = None,
    change_address: Optional[str] = None,
    enable_rbf: bool = True,
) -> dict:
    """Builds and prepares a PSBT in one call

    Returns {"hex": ..., "base64": ...}
    """
    if not outputs:
        raise MalformedTransaction("Outputs are required")

    builder = PSBTBuilder(
        address=address,
        fee_rate=fee_rate,
        outputs=outputs,
        public_key=public_key,
        network=network,
        change_address=change_address,
        datasource=datasource,
    )
    builder.set_rbf(enable_rbf)
    await builder.prepare()

    return {"hex": builder.to_hex(), "base64": builder.to_base64()}
