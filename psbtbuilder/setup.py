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

from typing import Optional

NETWORK = "testnet"
networks = {"mainnet", "testnet", "signet", "regtest"}


def setup(network: str = "testnet") -> str:
    """Sets the default network used when a call does not specify one.

    Args:
        network: The network to use (mainnet, testnet, signet, regtest)

    Raises:
        ValueError: if the network is not supported
    """
    global NETWORK
    if network not in networks:
        raise ValueError(f"Unsupported network: {network}")
    NETWORK = network
    return NETWORK


def get_network() -> str:
    global NETWORK
    return NETWORK


def resolve_network(network: Optional[str] = None) -> str:
    """Returns the given network, or the configured default when None"""
    if network is None:
        return get_network()
    if network not in networks:
        raise ValueError(f"Unsupported network: {network}")
    return network


def is_mainnet() -> bool:
    return get_network() == "mainnet"


def is_testnet() -> bool:
    return get_network() == "testnet"


def is_signet() -> bool:
    return get_network() == "signet"


def is_regtest() -> bool:
    return get_network() == "regtest"
