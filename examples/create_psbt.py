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

import asyncio
import logging

from psbtbuilder.setup import setup
from psbtbuilder.builder import PSBTBuilder
from psbtbuilder.datasource import Datasource, UTXORef


class StaticDatasource(Datasource):
    """Serves a fixed list of UTXOs; replace with a node or indexer client"""

    def __init__(self, utxos):
        self.utxos = utxos

    async def get_spendables(self, address, min_value_sats, exclude=()):
        return [utxo for utxo in self.utxos if utxo.identity not in exclude]

    async def get_transaction(self, txid, hex=True):
        raise LookupError(txid)


async def main():
    # always remember to setup the network
    setup("testnet")
    logging.basicConfig(level=logging.DEBUG)

    address = "tb1p98dv6f5jp5qr4z2dtaljvwrhq34xrr8zuaqgv4ajf36vg2mmsruqt5m3lv"
    datasource = StaticDatasource(
        [
            UTXORef.from_dict(
                {
                    "txid": "da8796350471c410fd3253c689368314a6eaf58b98a62afc97b416992e6e200c",
                    "n": 2,
                    "sats": 4501000,
                    "scriptPubKey": {
                        "hex": "512029dacd26920d003a894d5f7f263877046a618ce2e7408657b24c74c42b7b80f8",
                        "address": address,
                    },
                }
            )
        ]
    )

    builder = PSBTBuilder(
        address=address,
        fee_rate=1,
        outputs=[{"address": "tb1qatkgzm0hsk83ysqja5nq8ecdmtwl73zwurawww", "value": 600}],
        public_key="039ce27aa7666731648421004ba943b90b8273e23a175d9c58e3ec2e643a9b01d1",
        datasource=datasource,
    )
    await builder.prepare()

    print("Fee data:", builder.data)
    print("Sign inputs:", builder.inputs_to_sign)
    print("\nUnsigned PSBT (Base64):")
    print(builder.to_base64())


if __name__ == "__main__":
    asyncio.run(main())
