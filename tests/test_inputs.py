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
from dataclasses import fields

from embit.hashes import hash160

from psbtbuilder.classifier import ScriptFormat
from psbtbuilder.datasource import (
    Datasource,
    UTXORef,
    generate_identity,
    outpoint_to_id_format,
)
from psbtbuilder.exceptions import (
    DatasourceError,
    InvalidPublicKey,
    MalformedTransaction,
)
from psbtbuilder.inputs import (
    LegacyInput,
    NestedSegwitInput,
    SegwitInput,
    TaprootInput,
    build_input,
    compressed_public_key,
    x_only_public_key,
)
from psbtbuilder.script import Script
from psbtbuilder.transactions import Transaction, TxInput, TxOutput

PUBLIC_KEY = "039ce27aa7666731648421004ba943b90b8273e23a175d9c58e3ec2e643a9b01d1"
TXID = "da8796350471c410fd3253c689368314a6eaf58b98a62afc97b416992e6e200c"


class TransactionsOnly(Datasource):
    """Serves previous transactions; has no spendables"""

    def __init__(self, transactions):
        self.transactions = transactions
        self.fetched = []

    async def get_spendables(self, address, min_value_sats, exclude=()):
        return []

    async def get_transaction(self, txid, hex=True):
        self.fetched.append(txid)
        return self.transactions[txid]


class TestUTXORef(unittest.TestCase):
    def test_from_rpc_dict(self):
        utxo = UTXORef.from_dict(
            {
                "txid": TXID,
                "n": 2,
                "sats": 4501000,
                "scriptPubKey": {
                    "hex": "512029dacd26920d003a894d5f7f263877046a618ce2e7408657b24c74c42b7b80f8",
                    "address": "tb1p98dv6f5jp5qr4z2dtaljvwrhq34xrr8zuaqgv4ajf36vg2mmsruqt5m3lv",
                },
            }
        )
        self.assertEqual(utxo.identity, TXID + ":2")
        self.assertEqual(utxo.value_sats, 4501000)
        self.assertEqual(utxo.script_pubkey[:2], b"\x51\x20")
        self.assertTrue(utxo.address.startswith("tb1p"))

    def test_validation(self):
        with self.assertRaises(ValueError):
            UTXORef("abcd", 0, 1000, b"\x51")
        with self.assertRaises(ValueError):
            UTXORef(TXID, 0, -1, b"\x51")

    def test_identity_formats(self):
        self.assertEqual(generate_identity(TXID, 3), TXID + ":3")
        self.assertEqual(outpoint_to_id_format(TXID + ":3"), TXID + "i3")
        self.assertEqual(outpoint_to_id_format(TXID), TXID + "i0")
        self.assertEqual(outpoint_to_id_format(TXID + "i1"), TXID + "i1")


class TestPublicKeys(unittest.TestCase):
    def test_x_only_key(self):
        self.assertEqual(
            x_only_public_key(PUBLIC_KEY).hex(),
            "9ce27aa7666731648421004ba943b90b8273e23a175d9c58e3ec2e643a9b01d1",
        )

    def test_compressed_key_from_bytes(self):
        self.assertEqual(
            compressed_public_key(bytes.fromhex(PUBLIC_KEY)).hex(), PUBLIC_KEY
        )

    def test_invalid_keys(self):
        for key in ["deadbeef", "05" + "11" * 32, b"\x04" * 65]:
            with self.assertRaises(InvalidPublicKey):
                x_only_public_key(key)

    def test_invalid_key_is_value_error(self):
        with self.assertRaises(ValueError) as cm:
            compressed_public_key("deadbeef")
        self.assertEqual(cm.exception.public_key, "deadbeef")


class TestBuildInput(unittest.IsolatedAsyncioTestCase):
    maxDiff = None

    def utxo(self, script_hex, value=50000, txid=TXID, index=2):
        return UTXORef(
            txid=txid,
            output_index=index,
            value_sats=value,
            script_pubkey=bytes.fromhex(script_hex),
        )

    async def test_taproot(self):
        utxo = self.utxo(
            "512029dacd26920d003a894d5f7f263877046a618ce2e7408657b24c74c42b7b80f8",
            4501000,
        )
        built = await build_input(utxo, PUBLIC_KEY, "testnet", None)
        self.assertIsInstance(built, TaprootInput)
        self.assertIs(built.format, ScriptFormat.TAPROOT)
        self.assertEqual(built.identity, TXID + ":2")
        self.assertEqual(built.internal_key, x_only_public_key(PUBLIC_KEY))

        psbt_input = built.to_psbt_input()
        self.assertEqual(psbt_input.witness_utxo.amount, 4501000)
        self.assertEqual(psbt_input.witness_utxo.script_pubkey.to_bytes(), utxo.script_pubkey)
        self.assertEqual(psbt_input.tap_internal_key, built.internal_key)
        self.assertIsNone(psbt_input.sighash_type)
        self.assertIsNone(psbt_input.non_witness_utxo)
        # key path spends carry no witness data before signing
        self.assertIsNone(psbt_input.final_scriptwitness)
        self.assertEqual(psbt_input.tap_leaf_scripts, {})
        self.assertEqual(
            [f.name for f in fields(built)],
            ["txid", "output_index", "value_sats", "script_pubkey", "sighash_type", "internal_key"],
        )

    async def test_segwit(self):
        built = await build_input(
            self.utxo("0014eaec816df7858f124012ed2603e70ddaddff444e"),
            PUBLIC_KEY,
            "testnet",
            None,
        )
        self.assertIsInstance(built, SegwitInput)
        psbt_input = built.to_psbt_input()
        self.assertEqual(psbt_input.witness_utxo.amount, 50000)
        self.assertIsNone(psbt_input.tap_internal_key)
        self.assertIsNone(psbt_input.redeem_script)

    async def test_nested_segwit(self):
        built = await build_input(
            self.utxo("a91492d6ddfc9f0d24da6257b648ca385820802a0e7a87"),
            PUBLIC_KEY,
            "testnet",
            None,
        )
        self.assertIsInstance(built, NestedSegwitInput)
        expected = b"\x00\x14" + hash160(bytes.fromhex(PUBLIC_KEY))
        self.assertEqual(built.redeem_script, expected)
        psbt_input = built.to_psbt_input()
        self.assertEqual(psbt_input.redeem_script.to_bytes(), expected)
        self.assertTrue(psbt_input.redeem_script.is_p2wpkh())
        self.assertEqual(psbt_input.witness_utxo.amount, 50000)

    async def test_legacy_fetches_previous_transaction(self):
        script = "76a91492d6ddfc9f0d24da6257b648ca385820802a0e7a88ac"
        previous = Transaction(
            [TxInput("11" * 32, 0)],
            [
                TxOutput(1000, Script.from_raw("0014eaec816df7858f124012ed2603e70ddaddff444e")),
                TxOutput(70000, Script.from_raw(script)),
            ],
        )
        txid = previous.get_txid()
        datasource = TransactionsOnly({txid: previous.to_hex()})

        built = await build_input(
            self.utxo(script, 70000, txid, 1), PUBLIC_KEY, "testnet", datasource
        )
        self.assertIsInstance(built, LegacyInput)
        self.assertEqual(datasource.fetched, [txid])
        psbt_input = built.to_psbt_input()
        self.assertIsNone(psbt_input.witness_utxo)
        self.assertEqual(psbt_input.non_witness_utxo.get_txid(), txid)

    async def test_legacy_txid_mismatch(self):
        script = "76a91492d6ddfc9f0d24da6257b648ca385820802a0e7a88ac"
        other = Transaction([TxInput("22" * 32, 0)], [TxOutput(1, Script.from_raw(script))])
        datasource = TransactionsOnly({TXID: other.to_hex()})
        with self.assertRaises(DatasourceError) as cm:
            await build_input(self.utxo(script), PUBLIC_KEY, "testnet", datasource)
        self.assertEqual(cm.exception.txid, TXID)

    async def test_legacy_unparseable_transaction(self):
        script = "76a91492d6ddfc9f0d24da6257b648ca385820802a0e7a88ac"
        datasource = TransactionsOnly({TXID: "0200"})
        with self.assertRaises(DatasourceError):
            await build_input(self.utxo(script), PUBLIC_KEY, "testnet", datasource)

    async def test_legacy_without_datasource(self):
        with self.assertRaises(DatasourceError):
            await build_input(
                self.utxo("76a91492d6ddfc9f0d24da6257b648ca385820802a0e7a88ac"),
                PUBLIC_KEY,
                "testnet",
                None,
            )

    async def test_unsupported_script(self):
        with self.assertRaises(MalformedTransaction):
            await build_input(
                self.utxo("0020" + "66" * 32), PUBLIC_KEY, "testnet", None
            )

    async def test_invalid_public_key(self):
        with self.assertRaises(InvalidPublicKey):
            await build_input(
                self.utxo("a91492d6ddfc9f0d24da6257b648ca385820802a0e7a87"),
                "deadbeef",
                "testnet",
                None,
            )
        with self.assertRaises(InvalidPublicKey):
            await build_input(
                self.utxo(
                    "512029dacd26920d003a894d5f7f263877046a618ce2e7408657b24c74c42b7b80f8"
                ),
                "deadbeef",
                "testnet",
                None,
            )

    async def test_sighash_type(self):
        built = await build_input(
            self.utxo(
                "512029dacd26920d003a894d5f7f263877046a618ce2e7408657b24c74c42b7b80f8"
            ),
            PUBLIC_KEY,
            "testnet",
            None,
            sighash_type=0x83,
        )
        self.assertEqual(built.to_psbt_input().sighash_type, 0x83)

    async def test_tx_input_sequence(self):
        built = await build_input(
            self.utxo("0014eaec816df7858f124012ed2603e70ddaddff444e"),
            PUBLIC_KEY,
            "testnet",
            None,
        )
        tx_input = built.to_tx_input(b"\xfd\xff\xff\xff")
        self.assertEqual(tx_input.txid, TXID)
        self.assertEqual(tx_input.txout_index, 2)
        self.assertEqual(tx_input.sequence_number, 0xFFFFFFFD)


if __name__ == "__main__":
    unittest.main()
