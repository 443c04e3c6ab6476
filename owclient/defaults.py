#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Client defaults.

Every value can be overridden by the keyword arguments
of owclient.api.Client.
"""

from typing import Any, Dict

from owclient.constants import DerivationStrategy

COIN = "obyte"
NETWORK = "livenet"
DERIVATION_STRATEGY = DerivationStrategy.BIP44.value
MNEMONIC_LANGUAGE = "en"

BASE_URL = "http://localhost:3232/ows/api"
REQUEST_TIMEOUT = 50

# parameters of the symmetric envelope used for wallet-shared messages:
# the key is already a 128 bits random key, no need to stretch it
MESSAGE_ENCRYPTION_OPTS: Dict[str, Any] = {
    "ks": 128,
    "iter": 1,
    "ts": 64,
}

# parameters for the password based encryption of private material
PRIVATE_KEY_ENCRYPTION_OPTS: Dict[str, Any] = {
    "ks": 128,
    "iter": 10000,
    "ts": 64,
}

# display value of messages that could not be decrypted
CANNOT_DECRYPT = "<ECANNOTDECRYPT>"
