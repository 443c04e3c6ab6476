#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"Tests for the `owclient.verifier` module."

import logging

import pytest

from owclient.copayer import Copayer, ring_entry
from owclient.encryption import encrypt_message
from owclient.exceptions import OWClientStateError, ServerCompromised
from owclient.keystore import derive_child, neutered, shared_encrypting_key
from owclient.message import get_copayer_hash, sign_message
from owclient.verifier import Verifier

MASTER = "xprv9s21ZrQH143K3zLpjtB4J4yrRfDTEfbrMa9vLZaTAv5BzASwBmA16mdBmZKpMLssw1AzTnm31HAD2pk2bsnZ9dccxaLD48mRdhtw82XoiBi"
XPUBS = [neutered(derive_child(MASTER, f"m/44'/0'/{i}'")) for i in range(3)]
WALLET_PRV_KEY = "a28840e18650b1de8cb83bcd2213672a728be38a63e70680b0d2be9c452e2d4d"
REQUEST_PUB_KEY = "02" + "ab" * 32


def _copayer(n: int = 2) -> Copayer:
    copayer = Copayer.from_extended_public_key("0DEVICE", XPUBS[0], 0, WALLET_PRV_KEY)
    copayer.add_wallet_info("0DEVICE", "wallet-id", "wallet", n, n, REQUEST_PUB_KEY)
    ring = [ring_entry(xpub, REQUEST_PUB_KEY, "0DEVICE", i) for i, xpub in enumerate(XPUBS[:n])]
    copayer.add_public_key_ring(ring)
    return copayer


def _server_copayer(xpub: str, name: str = "me", key: str = WALLET_PRV_KEY):
    copayer_hash = get_copayer_hash(name, xpub, REQUEST_PUB_KEY)
    return {
        "name": name,
        "xPubKey": xpub,
        "requestPubKey": REQUEST_PUB_KEY,
        "signature": sign_message(copayer_hash, key),
    }


def test_check_address() -> None:
    copayer = _copayer()
    local = copayer.derive_address("m/0/1")
    address = {"address": local.address, "path": "m/0/1"}
    assert Verifier.check_address(copayer, address)
    Verifier.assert_address(copayer, address)

    address = {"address": local.address, "path": "m/0/2"}
    assert not Verifier.check_address(copayer, address)
    with pytest.raises(ServerCompromised, match="Server sent fake address"):
        Verifier.assert_address(copayer, address)

    address = {"address": local.address, "path": "m/0/1", "type": "shared"}
    assert Verifier.check_address(copayer, address)

    incomplete = Copayer.from_extended_public_key("0DEVICE", XPUBS[0], 0)
    with pytest.raises(OWClientStateError, match="incomplete copayer"):
        Verifier.check_address(incomplete, address)


def test_check_address_single_character() -> None:
    copayer = _copayer()
    local = copayer.derive_address("m/0/0")
    for i, char in enumerate(local.address):
        other = "A" if char != "A" else "B"
        address = local.address[:i] + other + local.address[i + 1 :]
        assert not Verifier.check_address(copayer, {"address": address, "path": "m/0/0"})


def test_check_address_invalid_responses(caplog) -> None:
    copayer = _copayer()
    local = copayer.derive_address("m/0/1")

    assert not Verifier.check_address(copayer, {"address": local.address})
    assert "invalid address path in server response" in caplog.text

    address = {"address": local.address, "path": "m/0'/1"}
    assert not Verifier.check_address(copayer, address)
    assert "cannot derive address at m/0'/1" in caplog.text
    address = {"address": local.address, "path": "not a path"}
    assert not Verifier.check_address(copayer, address)

    # the copayer spending policy cannot be changed by the service
    address = {"address": local.address, "path": "m/0/1", "type": "script"}
    assert not Verifier.check_address(copayer, address)
    assert "address type mismatch at m/0/1: script" in caplog.text
    address = {"address": local.address, "path": "m/0/1", "type": "normal"}
    assert not Verifier.check_address(copayer, address)

    assert not Verifier.check_address(copayer, [local.address, "m/0/1"])
    assert "invalid address in server response" in caplog.text

    for address in ({"path": "m/0/1"}, {"address": local.address, "path": "m/0'/1"}):
        with pytest.raises(ServerCompromised, match="Server sent fake address"):
            Verifier.assert_address(copayer, address)


def test_check_copayers() -> None:
    copayer = _copayer()
    copayers = [_server_copayer(XPUBS[0], "me"), _server_copayer(XPUBS[1], "you")]
    assert Verifier.check_copayers(copayer, copayers)
    Verifier.assert_copayers(copayer, copayers)

    # encrypted names are signed as they are
    copayers[1] = _server_copayer(XPUBS[1], "{\"iv\": \"...\"}")
    copayers[1]["encryptedName"] = copayers[1].pop("name")
    assert Verifier.check_copayers(copayer, copayers)


def test_check_copayers_failures(caplog) -> None:
    copayer = _copayer()
    me = _server_copayer(XPUBS[0], "me")
    you = _server_copayer(XPUBS[1], "you")

    assert not Verifier.check_copayers(copayer, [me])
    assert "missing public keys in server response" in caplog.text
    assert not Verifier.check_copayers(copayer, [me, me])
    assert "repeated public keys in server response" in caplog.text

    other = _server_copayer(XPUBS[2], "other")
    assert not Verifier.check_copayers(copayer, [you, other])
    assert "server response does not contain our public key" in caplog.text

    forged = _server_copayer(XPUBS[1], "you", "01" * 32)
    assert not Verifier.check_copayers(copayer, [me, forged])
    assert "invalid signatures in server response" in caplog.text
    with pytest.raises(ServerCompromised, match="Server sent fake copayers"):
        Verifier.assert_copayers(copayer, [me, forged])

    tampered = dict(you, name="not you")
    assert not Verifier.check_copayers(copayer, [me, tampered])

    incomplete = dict(you)
    del incomplete["requestPubKey"]
    assert not Verifier.check_copayers(copayer, [me, incomplete])
    assert "missing copayer fields in server response" in caplog.text

    assert not Verifier.check_copayers(copayer, [me, "you"])
    assert "invalid copayer in server response: 'you'" in caplog.text
    assert not Verifier.check_copayers(copayer, [me, dict(you, xPubKey=[XPUBS[1]])])
    assert not Verifier.check_copayers(copayer, {"me": me, "you": you})
    with pytest.raises(ServerCompromised, match="Server sent fake copayers"):
        Verifier.assert_copayers(copayer, [me, None])


def test_check_copayers_ring_size() -> None:
    copayer = _copayer()
    me = _server_copayer(XPUBS[0], "me")
    you = _server_copayer(XPUBS[1], "you")
    other = _server_copayer(XPUBS[2], "other")
    assert not Verifier.check_copayers(copayer, [me, you, other])
    assert Verifier.check_copayers(copayer, [me, you, other], 3)
    Verifier.assert_copayers(copayer, [me, you, other], 3)
    assert not Verifier.check_copayers(copayer, [me, you], 3)


def test_check_copayers_without_wallet_key(caplog) -> None:
    copayer = _copayer()
    copayer.wallet_priv_key = None
    with caplog.at_level(logging.WARNING):
        assert Verifier.check_copayers(copayer, [])
    assert "without the wallet private key" in caplog.text


def _payment(outputs, change_address=None, send_all=False, message=None):
    params = {"outputs": outputs}
    if change_address:
        params["change_address"] = change_address
    if send_all:
        params["send_all"] = True
    args = {"app": "payment", "params": params}
    if message:
        args["message"] = message
    return args


def test_check_proposal_creation() -> None:
    key = shared_encrypting_key(WALLET_PRV_KEY)
    outputs = [{"address": "ADDRESS1", "amount": 1000}, {"address": "ADDRESS2", "amount": 500}]
    args = _payment(outputs, "CHANGE", message=encrypt_message("hello", key))
    txp = {
        "app": "payment",
        "message": "hello",
        "params": {
            "change_address": "CHANGE",
            "outputs": list(reversed(outputs)) + [{"address": "CHANGE", "amount": 7}],
        },
    }
    assert Verifier.check_proposal_creation(args, txp, key)
    Verifier.assert_proposal_creation(args, txp, key)

    # wrong message
    assert not Verifier.check_proposal_creation(args, dict(txp, message="bye"), key)
    # undecryptable message
    other_key = shared_encrypting_key("01" * 32)
    assert not Verifier.check_proposal_creation(args, txp, other_key)
    with pytest.raises(ServerCompromised, match="Server sent fake transaction proposal"):
        Verifier.assert_proposal_creation(args, txp, other_key)


def test_check_payment_outputs() -> None:
    outputs = [{"address": "ADDRESS1", "amount": 1000}]
    args = _payment(outputs)
    txp = {"params": {"outputs": [{"address": "ADDRESS1", "amount": 1000}]}}
    assert Verifier.check_proposal_creation(args, txp, None)

    # wrong amount
    txp = {"params": {"outputs": [{"address": "ADDRESS1", "amount": 1001}]}}
    assert not Verifier.check_proposal_creation(args, txp, None)
    # extra output
    txp = {
        "params": {
            "outputs": [{"address": "ADDRESS1", "amount": 1000}, {"address": "THIEF", "amount": 1}]
        }
    }
    assert not Verifier.check_proposal_creation(args, txp, None)
    # outputs are matched once each
    args = _payment([{"address": "ADDRESS1", "amount": 1000}] * 2)
    txp = {"params": {"outputs": [{"address": "ADDRESS1", "amount": 1000}]}}
    assert not Verifier.check_proposal_creation(args, txp, None)

    # change address substitution
    args = _payment(outputs, "CHANGE")
    txp = {
        "params": {
            "change_address": "THIEF",
            "outputs": outputs + [{"address": "THIEF", "amount": 7}],
        }
    }
    assert not Verifier.check_proposal_creation(args, txp, None)


def test_check_change_output(caplog) -> None:
    outputs = [{"address": "ADDRESS1", "amount": 1000}]
    args = _payment(outputs, "CHANGE")
    txp = {
        "params": {
            "change_address": "CHANGE",
            "outputs": outputs + [{"address": "CHANGE", "amount": 99999}],
        }
    }
    assert Verifier.check_proposal_creation(args, txp, None)

    # the change is sent elsewhere
    txp = {
        "params": {
            "change_address": "CHANGE",
            "outputs": outputs + [{"address": "THIEF", "amount": 99999}],
        }
    }
    assert not Verifier.check_proposal_creation(args, txp, None)
    assert "unexpected outputs: " in caplog.text
    with pytest.raises(ServerCompromised, match="Server sent fake transaction proposal"):
        Verifier.assert_proposal_creation(args, txp, None)

    # a requested output is duplicated in place of the change
    txp = {"params": {"change_address": "CHANGE", "outputs": outputs * 2}}
    assert not Verifier.check_proposal_creation(args, txp, None)

    # the change address is dropped by the service
    txp = {"params": {"outputs": outputs + [{"address": "THIEF", "amount": 99999}]}}
    assert not Verifier.check_proposal_creation(args, txp, None)
    txp = {"params": {"outputs": outputs}}
    assert not Verifier.check_proposal_creation(args, txp, None)

    # a change address chosen by the service is paid by the only extra output
    args = _payment(outputs)
    txp = {
        "params": {
            "change_address": "CHANGE",
            "outputs": outputs + [{"address": "CHANGE", "amount": 5}],
        }
    }
    assert Verifier.check_proposal_creation(args, txp, None)
    txp = {
        "params": {
            "change_address": "CHANGE",
            "outputs": outputs + [{"address": "CHANGE", "amount": 5}] * 2,
        }
    }
    assert not Verifier.check_proposal_creation(args, txp, None)


def test_check_proposal_invalid_responses(caplog) -> None:
    args = _payment([{"address": "ADDRESS1", "amount": 1000}])
    assert not Verifier.check_proposal_creation(args, ["ADDRESS1", 1000], None)
    assert "invalid proposal in server response" in caplog.text
    assert not Verifier.check_proposal_creation(args, {"params": ["ADDRESS1"]}, None)
    assert not Verifier.check_proposal_creation(args, {"params": {"outputs": ["ADDRESS1"]}}, None)
    assert "invalid outputs: " in caplog.text

    args = _payment([{"address": "ADDRESS1"}], send_all=True)
    assert not Verifier.check_proposal_creation(args, {"params": {"outputs": [7]}}, None)


def test_send_all() -> None:
    args = _payment([{"address": "ADDRESS1"}], send_all=True)
    txp = {"params": {"outputs": [{"address": "ADDRESS1", "amount": 123456}]}}
    assert Verifier.check_proposal_creation(args, txp, None)

    txp = {"params": {"outputs": [{"address": "THIEF", "amount": 123456}]}}
    assert not Verifier.check_proposal_creation(args, txp, None)


def test_custom_data() -> None:
    args = {"app": "data", "customData": {"order": 1}}
    assert Verifier.check_proposal_creation(args, {"customData": {"order": 1}}, None)
    assert not Verifier.check_proposal_creation(args, {"customData": {"order": 2}}, None)
    assert not Verifier.check_proposal_creation(args, {}, None)
    assert not Verifier.check_proposal_creation({"app": "data"}, {"customData": 1}, None)
    assert Verifier.check_proposal_creation({"app": "data"}, {}, None)
