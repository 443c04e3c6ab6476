#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Protocol constants.

Derivation paths are fixed by the protocol and are not configurable:

- DEVICE_KEY: the device key, whose public key is the device address
- REQUEST_KEY: the key authenticating requests to the wallet service
- REQUEST_KEY_AUTH: relative to the account base path,
  it signs the request public key
"""

import os
from enum import Enum
from typing import Dict, Tuple

COINS: Tuple[str, ...] = ("obyte",)
NETWORKS: Tuple[str, ...] = ("livenet", "testnet")


class DerivationStrategy(str, Enum):
    BIP44 = "BIP44"
    BIP45 = "BIP45"
    BIP48 = "BIP48"


DERIVATION_STRATEGIES: Tuple[str, ...] = tuple(s.value for s in DerivationStrategy)

# purpose of the account-based strategies, see get_base_derivation_path
PURPOSES: Dict[DerivationStrategy, int] = {
    DerivationStrategy.BIP44: 44,
    DerivationStrategy.BIP48: 48,
}

PATHS: Dict[str, str] = {
    "DEVICE_KEY": "m/1'",
    "REQUEST_KEY": "m/1'/0",
    "REQUEST_KEY_AUTH": "m/2",
}

# at least 112 bits of entropy for externally supplied sources
MIN_ENTROPY_BYTES = 14

# labels of the keyed hashes over the entropy source
REQUEST_KEY_LABEL = "reqPrivKey"
PERSONAL_KEY_LABEL = "personalKey"

TESTNET = bool(os.environ.get("testnet"))
VERSION_WITHOUT_TIMESTAMP = "1.0t" if TESTNET else "1.0"
