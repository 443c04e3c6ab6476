#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Verification of the wallet service responses.

The service is not trusted: any address, public key ring, or
transaction proposal it returns is checked against what the
client can compute (or remembers having asked) on its own.
"""

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from owclient.copayer import Copayer
from owclient.encryption import decrypt_message
from owclient.exceptions import (
    DecryptionFailed,
    OWClientStateError,
    OWClientValueError,
    ServerCompromised,
)
from owclient.keystore import pub_key_from_prv_key
from owclient.message import get_copayer_hash, verify_message

LOGGER = logging.getLogger(__name__)


def _str_equal(str1: Optional[str], str2: Optional[str]) -> bool:
    "Strings are equal, or both empty (or missing)."
    return (not str1 and not str2) or str1 == str2


class Verifier:
    """Check data returned by the wallet service.

    The check_ methods return False, logging the reason, on any
    unexpected server data; the assert_ methods raise ServerCompromised.
    """

    @staticmethod
    def check_address(copayer: Copayer, address: Mapping[str, Any]) -> bool:
        "Return True if the address is the one derived from the public key ring."
        if not copayer.is_complete():
            raise OWClientStateError("incomplete copayer")

        if not isinstance(address, Mapping):
            LOGGER.error("invalid address in server response: %r", address)
            return False
        path = address.get("path")
        if not isinstance(path, str):
            LOGGER.error("invalid address path in server response: %r", path)
            return False
        # the spending policy is the copayer one, never the server one
        address_type = address.get("type")
        if address_type and address_type != copayer.address_type.value:
            LOGGER.error("address type mismatch at %s: %s", path, address_type)
            return False

        try:
            local = copayer.derive_address(path)
        except (OWClientValueError, TypeError) as e:
            LOGGER.error("cannot derive address at %s: %s", path, e)
            return False
        if local.address != address.get("address"):
            LOGGER.error("address mismatch at %s: %s", path, address.get("address"))
            return False
        return True

    @staticmethod
    def check_copayers(
        copayer: Copayer, copayers: Sequence[Mapping[str, Any]], n: Optional[int] = None
    ) -> bool:
        """Return True if the public key ring is complete and signed.

        Each entry must be signed with the wallet private key,
        and the copayer own extended public key must be in it.
        The ring size is checked against n, defaulting to the
        copayer one.
        """
        if not copayer.wallet_priv_key:
            LOGGER.warning("copayers cannot be checked without the wallet private key")
            return True
        wallet_pub_key = pub_key_from_prv_key(copayer.wallet_priv_key)

        if n is None:
            n = copayer.n
        if not isinstance(copayers, (list, tuple)) or len(copayers) != n:
            LOGGER.error("missing public keys in server response")
            return False

        seen = set()
        for entry in copayers:
            if not isinstance(entry, Mapping):
                LOGGER.error("invalid copayer in server response: %r", entry)
                return False
            name = entry.get("encryptedName") or entry.get("name")
            xpub = entry.get("xPubKey")
            request_pub_key = entry.get("requestPubKey")
            signature = entry.get("signature")
            fields = (name, xpub, request_pub_key, signature)
            if not all(field and isinstance(field, str) for field in fields):
                LOGGER.error("missing copayer fields in server response")
                return False

            if xpub in seen:
                LOGGER.error("repeated public keys in server response")
                return False
            seen.add(xpub)

            copayer_hash = get_copayer_hash(name, xpub, request_pub_key)
            if not verify_message(copayer_hash, signature, wallet_pub_key):
                LOGGER.error("invalid signatures in server response")
                return False

        if copayer.xpub not in seen:
            LOGGER.error("server response does not contain our public key")
            return False
        return True

    @staticmethod
    def _check_payment_outputs(params: Mapping[str, Any], txp_params: Mapping[str, Any]) -> bool:
        requested_change = params.get("change_address")
        change_address = txp_params.get("change_address")
        if requested_change and not _str_equal(change_address, requested_change):
            LOGGER.error("change address mismatch: %s", change_address)
            return False

        proposed = txp_params.get("outputs") or []
        if not isinstance(proposed, list) or not all(isinstance(o, Mapping) for o in proposed):
            LOGGER.error("invalid outputs: %r", proposed)
            return False
        outputs: List[Dict[str, Any]] = copy.deepcopy(proposed)
        for output in params.get("outputs") or []:
            for i, item in enumerate(outputs):
                if _str_equal(output.get("address"), item.get("address")) and output.get(
                    "amount"
                ) == item.get("amount"):
                    del outputs[i]
                    break
            else:
                LOGGER.error("missing output: %s", output)
                return False

        # the only output left must pay the change address
        change_address = requested_change or change_address
        if not change_address:
            if outputs:
                LOGGER.error("unexpected outputs: %s", outputs)
                return False
            return True
        if len(outputs) != 1 or outputs[0].get("address") != change_address:
            LOGGER.error("unexpected outputs: %s", outputs)
            return False
        return True

    @staticmethod
    def check_proposal_creation(
        args: Mapping[str, Any], txp: Mapping[str, Any], encrypting_key: Optional[str]
    ) -> bool:
        """Return True if the proposal is the one that was requested.

        For payments the outputs are compared as a multiset;
        for send_all proposals only the destination address is compared,
        as amounts are computed by the service.
        """
        if not isinstance(txp, Mapping):
            LOGGER.error("invalid proposal in server response: %r", txp)
            return False

        if args.get("app") == "payment":
            params = args.get("params") or {}
            txp_params = txp.get("params") or {}
            if not isinstance(txp_params, Mapping):
                LOGGER.error("invalid proposal params: %r", txp_params)
                return False
            if params.get("send_all"):
                requested = (params.get("outputs") or [{}])[0].get("address")
                proposed = txp_params.get("outputs") or [{}]
                if not isinstance(proposed, list) or not isinstance(proposed[0], Mapping):
                    LOGGER.error("invalid outputs: %r", proposed)
                    return False
                if requested != proposed[0].get("address"):
                    LOGGER.error("send all address mismatch: %s", proposed[0].get("address"))
                    return False
            elif not Verifier._check_payment_outputs(params, txp_params):
                return False

        try:
            message = decrypt_message(args.get("message"), encrypting_key)
        except (DecryptionFailed, ValueError):
            LOGGER.error("cannot decrypt the proposal message")
            return False
        if not _str_equal(txp.get("message"), message):
            LOGGER.error("proposal message mismatch")
            return False

        custom_data = args.get("customData")
        if (custom_data or txp.get("customData")) and txp.get("customData") != custom_data:
            LOGGER.error("proposal custom data mismatch")
            return False
        return True

    @staticmethod
    def assert_address(copayer: Copayer, address: Mapping[str, Any]) -> None:
        if not Verifier.check_address(copayer, address):
            raise ServerCompromised("Server sent fake address")

    @staticmethod
    def assert_copayers(
        copayer: Copayer, copayers: Sequence[Mapping[str, Any]], n: Optional[int] = None
    ) -> None:
        if not Verifier.check_copayers(copayer, copayers, n):
            raise ServerCompromised("Server sent fake copayers")

    @staticmethod
    def assert_proposal_creation(
        args: Mapping[str, Any], txp: Mapping[str, Any], encrypting_key: Optional[str]
    ) -> None:
        if not Verifier.check_proposal_creation(args, txp, encrypting_key):
            raise ServerCompromised("Server sent fake transaction proposal")
