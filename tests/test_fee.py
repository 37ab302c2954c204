# Copyright (C) 2018-2025 The psbt-builder developers
#
# This file is part of psbt-builder
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of psbt-builder, including this file, may be copied,
# modified, propagated, or distributed except according to the terms contained
# in the LICENSE file.


import unittest
from decimal import Decimal

from psbtbuilder.setup import setup
from psbtbuilder.classifier import address_to_script_pubkey
from psbtbuilder.exceptions import (
    FeeCalculationError,
    InvalidFeeRate,
    InvalidScript,
    MalformedTransaction,
)
from psbtbuilder.fee import FeeEstimator, validate_fee_rate
from psbtbuilder.psbt import PSBT, PSBTInput
from psbtbuilder.script import Script
from psbtbuilder.transactions import (
    Transaction,
    TxInput,
    TxOutput,
    TxWitnessInput,
)


def witness_input(script_hex: str, amount: int) -> PSBTInput:
    psbt_input = PSBTInput()
    psbt_input.witness_utxo = TxOutput(amount, Script.from_raw(script_hex))
    return psbt_input


class TestFeeEstimatorReferenceValues(unittest.TestCase):
    maxDiff = None

    def setUp(self):
        setup("testnet")
        self.p2sh_script = "a91492d6ddfc9f0d24da6257b648ca385820802a0e7a87"
        self.p2wpkh_script = "0014b5bd2596668dd2fa2fe6c1dec16d866776dbea50"
        self.p2tr_script = (
            "51201f7ec7fdc15078dbcdcad6c26cfef376aa9cd052264aaf82290cd7ed316040dd"
        )

    def p2sh_psbt(self) -> PSBT:
        psbt = PSBT()
        for txid in (
            "87f4282652ef649c081d3f0d782394c56dbe0ffa6d2f3556426aa8a5d644bfda",
            "b74b9fcea9273289d6b5a8b5b78a6d0dd15aa197f44551f705e319d0d6bb090c",
        ):
            psbt_input = witness_input(self.p2sh_script, 50000)
            psbt_input.redeem_script = Script.from_raw(
                "0014b5bd2596668dd2fa2fe6c1dec16d866776dbea50"
            )
            psbt.add_input(TxInput(txid, 0), psbt_input)
        psbt.add_output(TxOutput(20000, Script.from_raw(self.p2sh_script)))
        psbt.add_output(TxOutput(70000, Script.from_raw(self.p2sh_script)))
        return psbt

    def p2tr_psbt(self) -> PSBT:
        psbt = PSBT()
        txid = "c6de8dbe322cf19e1f7a4d57a44b6cd07e54669bd00d7b166699034a409cd44f"
        psbt.add_input(TxInput(txid, 0), witness_input(self.p2tr_script, 420000))
        output_script = address_to_script_pubkey(
            "bcrt1pnr7erhxvxpgavz7g9rtuy5d3qn8wev807eqvj2secjmp00kf5caspgykj7",
            "regtest",
        )
        psbt.add_output(TxOutput(410000, Script.from_raw(output_script)))
        return psbt

    def test_p2sh_p2wpkh_two_in_two_out(self):
        estimator = FeeEstimator(1, "mainnet", self.p2sh_psbt())
        self.assertEqual(estimator.calculate_network_fee(), 255)
        self.assertEqual(
            estimator.data, {"fee": 255, "virtual_size": 255, "weight": 1020}
        )

    def test_p2wpkh_in_p2pkh_out(self):
        psbt = PSBT()
        txid = "68115c006db166c6b92ca30dfced206a3501422f64044effcad3c18c97befcc9"
        psbt.add_input(TxInput(txid, 0), witness_input(self.p2wpkh_script, 50000))
        output_script = address_to_script_pubkey("mui37H2932ZJLpbmo2fVLZWcX8CEnaSR5G")
        psbt.add_output(TxOutput(20000, Script.from_raw(output_script)))

        estimator = FeeEstimator(1, "testnet", psbt)
        self.assertEqual(estimator.compute_fee(), 113)
        self.assertEqual(estimator.weight, 449)
        self.assertEqual(estimator.virtual_size, 113)

    def test_p2tr_in_p2tr_out(self):
        estimator = FeeEstimator(1, "regtest", self.p2tr_psbt())
        self.assertEqual(estimator.calculate_network_fee(), 113)
        self.assertEqual(estimator.weight, 450)

    def test_fee_scales_with_rate(self):
        estimator = FeeEstimator(7, "regtest", self.p2tr_psbt())
        self.assertEqual(estimator.calculate_network_fee(), 113 * 7)

    def test_zero_fee_rate(self):
        estimator = FeeEstimator(0, "regtest", self.p2tr_psbt())
        self.assertEqual(estimator.calculate_network_fee(), 0)
        self.assertEqual(estimator.virtual_size, 113)

    def test_witness_override(self):
        estimator = FeeEstimator(1, "regtest", self.p2tr_psbt(), witness=[b"\x01" * 64])
        # 382 base weight + 64 witness bytes + marker and flag
        self.assertEqual(estimator.calculate_network_fee(), 112)
        self.assertEqual(estimator.weight, 448)

    def test_empty_witness_override_drops_marker(self):
        estimator = FeeEstimator(1, "regtest", self.p2tr_psbt(), witness=[])
        estimator.calculate_network_fee()
        self.assertEqual(estimator.weight, 382)

    def test_repeated_calls_are_stable(self):
        estimator = FeeEstimator(3, "mainnet", self.p2sh_psbt())
        self.assertEqual(
            estimator.calculate_network_fee(), estimator.calculate_network_fee()
        )

    def test_fee_ceiling(self):
        estimator = FeeEstimator(50000, "regtest", self.p2tr_psbt())
        with self.assertRaises(FeeCalculationError) as cm:
            estimator.calculate_network_fee()
        self.assertEqual(cm.exception.fee, 113 * 50000)
        self.assertEqual(cm.exception.maximum, 5000000)


class TestFeeEstimatorAgainstSignedSizes(unittest.TestCase):
    """The table based estimate of an unsigned skeleton covers the size of
    the same transaction once its witnesses are filled in"""

    def setUp(self):
        setup("testnet")
        self.p2tr_script = (
            "512029dacd26920d003a894d5f7f263877046a618ce2e7408657b24c74c42b7b80f8"
        )
        self.txid = "da8796350471c410fd3253c689368314a6eaf58b98a62afc97b416992e6e200c"

    def signed_and_estimated(self, input_script, output_script, stack):
        psbt = PSBT()
        psbt.add_input(TxInput(self.txid, 0), witness_input(input_script, 50000))
        psbt.add_output(TxOutput(40000, Script.from_raw(output_script)))
        estimator = FeeEstimator(1, psbt=psbt)
        estimator.calculate_network_fee()

        signed = Transaction(
            [TxInput(self.txid, 0)],
            [TxOutput(40000, Script.from_raw(output_script))],
            has_segwit=True,
            witnesses=[TxWitnessInput(stack)],
        )
        return signed, estimator

    def test_taproot_key_path_spend(self):
        signed, estimator = self.signed_and_estimated(
            self.p2tr_script, self.p2tr_script, ["22" * 64]
        )
        self.assertEqual(signed.get_size(), 162)
        self.assertEqual(signed.get_vsize(), 111)
        self.assertEqual(estimator.virtual_size, 113)
        self.assertGreaterEqual(estimator.virtual_size, signed.get_vsize())

    def test_p2wpkh_spend(self):
        signed, estimator = self.signed_and_estimated(
            "0014b5bd2596668dd2fa2fe6c1dec16d866776dbea50",
            "76a91492d6ddfc9f0d24da6257b648ca385820802a0e7a88ac",
            ["30" * 72, "02" * 33],
        )
        # 85 base bytes and 110 witness bytes
        self.assertEqual(signed.get_vsize(), 113)
        self.assertEqual(estimator.virtual_size, 113)
        self.assertGreaterEqual(estimator.virtual_size, signed.get_vsize())


class TestFeeEstimatorSkeletons(unittest.TestCase):
    def setUp(self):
        setup("testnet")
        self.p2pkh_script = "76a91492d6ddfc9f0d24da6257b648ca385820802a0e7a88ac"
        self.p2tr_script = (
            "512029dacd26920d003a894d5f7f263877046a618ce2e7408657b24c74c42b7b80f8"
        )

    def legacy_psbt(self) -> PSBT:
        previous = Transaction(
            [TxInput("11" * 32, 0)],
            [
                TxOutput(1000, Script.from_raw(self.p2tr_script)),
                TxOutput(50000, Script.from_raw(self.p2pkh_script)),
            ],
        )
        psbt_input = PSBTInput()
        psbt_input.non_witness_utxo = previous
        psbt = PSBT()
        psbt.add_input(TxInput(previous.get_txid(), 1), psbt_input)
        psbt.add_output(TxOutput(40000, Script.from_raw(self.p2pkh_script)))
        return psbt

    def test_non_witness_utxo_script_is_resolved(self):
        estimator = FeeEstimator(1, psbt=self.legacy_psbt())
        # 592 input + 136 output + 40 header, no witness
        self.assertEqual(estimator.calculate_network_fee(), 192)
        self.assertEqual(estimator.weight, 768)

    def test_header_follows_largest_input_format(self):
        psbt = self.legacy_psbt()
        txid = "22" * 32
        psbt.add_input(TxInput(txid, 0), witness_input(self.p2tr_script, 1000))
        estimator = FeeEstimator(1, psbt=psbt)
        estimator.calculate_network_fee()
        # 592 + 168 inputs, 136 output, 42 header, 66 + 2 witness
        self.assertEqual(estimator.weight, 1006)
        self.assertEqual(estimator.virtual_size, 252)

    def test_no_inputs(self):
        psbt = PSBT()
        psbt.add_output(TxOutput(1000, Script.from_raw(self.p2tr_script)))
        with self.assertRaises(MalformedTransaction):
            FeeEstimator(1, psbt=psbt).calculate_network_fee()

    def test_no_outputs(self):
        psbt = PSBT()
        txid = "33" * 32
        psbt.add_input(TxInput(txid, 0), witness_input(self.p2tr_script, 1000))
        with self.assertRaises(MalformedTransaction):
            FeeEstimator(1, psbt=psbt).calculate_network_fee()

    def test_empty_skeleton(self):
        with self.assertRaises(MalformedTransaction):
            FeeEstimator(1).calculate_network_fee()

    def test_input_without_previous_script(self):
        psbt = PSBT()
        psbt.add_input(TxInput("44" * 32, 0))
        psbt.add_output(TxOutput(1000, Script.from_raw(self.p2tr_script)))
        with self.assertRaises(InvalidScript) as cm:
            FeeEstimator(1, psbt=psbt).calculate_network_fee()
        self.assertEqual(cm.exception.input_index, 0)
        self.assertIsInstance(cm.exception, MalformedTransaction)

    def test_unknown_output_format(self):
        psbt = PSBT()
        txid = "55" * 32
        psbt.add_input(TxInput(txid, 0), witness_input(self.p2tr_script, 1000))
        psbt.add_output(TxOutput(900, Script.from_raw("0020" + "66" * 32)))
        with self.assertRaises(MalformedTransaction):
            FeeEstimator(1, psbt=psbt).calculate_network_fee()

    def test_unknown_input_format(self):
        psbt = PSBT()
        txid = "77" * 32
        psbt.add_input(TxInput(txid, 0), witness_input("6a00", 1000))
        psbt.add_output(TxOutput(900, Script.from_raw(self.p2tr_script)))
        with self.assertRaises(MalformedTransaction):
            FeeEstimator(1, psbt=psbt).calculate_network_fee()


class TestFeeRateValidation(unittest.TestCase):
    def test_accepted_rates(self):
        self.assertEqual(validate_fee_rate(0), 0)
        self.assertEqual(validate_fee_rate(12), 12)
        self.assertEqual(validate_fee_rate(2.0), 2)
        self.assertEqual(validate_fee_rate(Decimal("3")), 3)

    def test_rejected_rates(self):
        for rate in [-1, 1.5, Decimal("0.1"), True, "1", None, float("nan"), float("inf")]:
            with self.assertRaises(InvalidFeeRate):
                validate_fee_rate(rate)

    def test_non_finite_decimals(self):
        for rate in [Decimal("sNaN"), Decimal("NaN"), Decimal("Infinity"), Decimal("-Infinity")]:
            with self.assertRaises(InvalidFeeRate) as cm:
                validate_fee_rate(rate)
            self.assertIs(cm.exception.fee_rate, rate)

    def test_invalid_fee_rate_is_value_error(self):
        with self.assertRaises(ValueError) as cm:
            FeeEstimator(-1)
        self.assertEqual(cm.exception.fee_rate, -1)


if __name__ == "__main__":
    unittest.main()
