#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Wallet service client.

Client orchestrates the device identity, its copayers, and the
requests to the (semi-trusted) wallet service.

The HTTP layer is not part of the client: a Transport object is
injected, and every security relevant value in the service responses
is checked with owclient.verifier before being used.
A failed check raises ServerCompromised and is never retried.
"""

import base64
import copy
import json
import logging
import random
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

from owclient import __version__, defaults
from owclient.constants import COINS, NETWORKS, DerivationStrategy
from owclient.copayer import Copayer
from owclient.device import Device, Keys
from owclient.encryption import (
    decrypt_message,
    decrypt_message_no_throw,
    encrypt_message,
)
from owclient.exceptions import (
    ConnectionError_,
    ConnectionReset,
    CopayerInWallet,
    DecryptionFailed,
    EncryptedPrivateKey,
    InvalidBackup,
    InvalidCoin,
    InvalidNetwork,
    MissingPrivateKey,
    NetworkMismatch,
    NotAuthorized,
    NotFound,
    OWClientRuntimeError,
    OWClientStateError,
    OWClientValueError,
    ProtocolError,
    WalletAlreadyExists,
    WalletDoesNotExist,
    error_from_code,
)
from owclient.keystore import (
    derive_private_key,
    derive_public_key,
    new_prv_key,
    pub_key_from_prv_key,
    shared_encrypting_key,
)
from owclient.message import (
    get_copayer_hash,
    sign_message,
    sign_request,
    sign_request_pub_key,
    sign_unit_hash,
)
from owclient.object_hash import get_unit_hash_to_sign
from owclient.validation import KeyDerivationValidator
from owclient.verifier import Verifier


LOGGER = logging.getLogger(__name__)

TXP_STATUSES = ("temporary", "pending", "accepted", "broadcasted", "rejected")

Response = Tuple[Optional[int], Any]


class Transport:
    """HTTP layer interface.

    Each method sends a request with JSON args (query args for
    GET and DELETE) and returns the status code (None if no response
    was received) together with the decoded JSON body.
    """

    def get(self, url: str, args: Any, headers: Dict[str, str], timeout: int) -> Response:
        raise NotImplementedError

    def post(self, url: str, args: Any, headers: Dict[str, str], timeout: int) -> Response:
        raise NotImplementedError

    def put(self, url: str, args: Any, headers: Dict[str, str], timeout: int) -> Response:
        raise NotImplementedError

    def delete(self, url: str, args: Any, headers: Dict[str, str], timeout: int) -> Response:
        raise NotImplementedError


def parse_error(body: Any) -> ProtocolError:
    "Return the exception of a wallet service error body."
    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except ValueError:
            body = {"error": body}
    if not isinstance(body, dict):
        body = {"error": body}
    if body.get("code"):
        return error_from_code(body["code"], body.get("message"))
    return ProtocolError(body.get("error") or json.dumps(body))


def extract_public_key_ring(copayers: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    ring = []
    for copayer in copayers:
        entry = {k: copayer.get(k) for k in ("xPubKey", "requestPubKey", "deviceId", "account")}
        entry["copayerName"] = copayer.get("name")
        ring.append(entry)
    return ring


def _find_copayer(copayers: Any, copayer_id: Optional[str]) -> Optional[Dict[str, Any]]:
    return next((c for c in copayers if isinstance(c, dict) and c.get("id") == copayer_id), None)


def _check_coin(coin: str) -> None:
    if coin not in COINS:
        raise InvalidCoin(f"invalid coin: {coin}")


def _check_network(network: str) -> None:
    if network not in NETWORKS:
        raise InvalidNetwork(f"invalid network: {network}")


class Client:
    """Wallet service client of a single device.

    It is not thread safe: a device must have a single writer.
    """

    def __init__(
        self,
        transport: Transport,
        base_url: str = defaults.BASE_URL,
        timeout: int = defaults.REQUEST_TIMEOUT,
        support_staff_wallet_id: Optional[str] = None,
        validator: Optional[KeyDerivationValidator] = None,
    ) -> None:
        self.transport = transport
        self.base_url = base_url
        self.timeout = timeout
        self.support_staff_wallet_id = support_staff_wallet_id
        self.validator = validator or KeyDerivationValidator()

        self.device: Optional[Device] = None
        self.copayer: Optional[Copayer] = None
        self.session: Optional[str] = None
        self.key_derivation_ok: Optional[bool] = None

    # requests

    def _get_headers(self) -> Dict[str, str]:
        headers = {"x-client-version": f"owc-{__version__}"}
        if self.support_staff_wallet_id:
            headers["x-wallet-id"] = self.support_staff_wallet_id
        return headers

    def _do_request(self, method: str, url: str, args: Any, use_session: bool = False) -> Any:
        headers = self._get_headers()
        if self.copayer:
            headers["x-identity"] = self.copayer.copayer_id
            if use_session and self.session:
                headers["x-session"] = self.session
            elif self.device and self.device.request_priv_key:
                headers["x-signature"] = sign_request(
                    method, url, args, self.device.request_priv_key
                )

        send = getattr(self.transport, method)
        status, body = send(self.base_url + url, args, headers, self.timeout)
        if not status:
            raise ConnectionError_()
        LOGGER.debug("%s %s: %s %s", method, url, status, body)

        if status != 200:
            if status == 404:
                raise NotFound()
            LOGGER.error("HTTP error: %s", status)
            if not body:
                raise ProtocolError(f"HTTP error {status}")
            raise parse_error(body)

        if body == '{"error":"read ECONNRESET"}':
            raise ConnectionReset(json.loads(body)["error"])
        return body

    def _do_post_request(self, url: str, args: Any) -> Any:
        return self._do_request("post", url, args)

    def _do_put_request(self, url: str, args: Any) -> Any:
        return self._do_request("put", url, args)

    def _do_delete_request(self, url: str) -> Any:
        return self._do_request("delete", url, {})

    @staticmethod
    def _no_cache(url: str) -> str:
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}r={random.randint(10000, 99999)}"

    def _do_get_request(self, url: str) -> Any:
        return self._do_request("get", self._no_cache(url), {})

    def _login(self) -> None:
        session = self._do_post_request("/v1/login", {})
        if not session:
            raise NotAuthorized()
        self.session = session

    def _do_request_with_login(self, method: str, url: str, args: Any) -> Any:
        "Request within a session: an expired session is renewed once."
        if not self.session:
            self._login()
        try:
            return self._do_request(method, url, args, use_session=True)
        except NotAuthorized:
            LOGGER.info("session expired, logging in again")
            self._login()
            return self._do_request(method, url, args, use_session=True)

    def _do_get_request_with_login(self, url: str) -> Any:
        return self._do_request_with_login("get", self._no_cache(url), {})

    # state checks

    def _require_device(self) -> Device:
        if not self.device:
            raise OWClientStateError("no device")
        return self.device

    def _require_copayer(self, complete: bool = True) -> Copayer:
        self._require_device()
        if not self.copayer:
            raise OWClientStateError("no copayer")
        if complete and not self.copayer.is_complete():
            raise OWClientStateError("wallet is not complete")
        return self.copayer

    def _check_key_derivation(self) -> bool:
        if self.key_derivation_ok is False:
            LOGGER.error("key derivation for this device is not working as expected")
            return False
        return True

    # seeding

    def seed_from_random(
        self, coin: str = defaults.COIN, network: str = defaults.NETWORK
    ) -> None:
        self.device = Device.create(coin, network)
        self.copayer = self.device.add_copayer(self.device.get_new_account())

    def seed_from_random_with_mnemonic(
        self,
        coin: str = defaults.COIN,
        network: str = defaults.NETWORK,
        passphrase: Optional[str] = None,
        lang: str = defaults.MNEMONIC_LANGUAGE,
        account: int = 0,
    ) -> None:
        self.device = Device.create_with_mnemonic(coin, network, passphrase, lang)
        self.copayer = self.device.add_copayer(account)

    def seed_from_extended_private_key(
        self,
        xprv: str,
        coin: str = defaults.COIN,
        account: int = 0,
        derivation_strategy: str = defaults.DERIVATION_STRATEGY,
    ) -> None:
        self.device = Device.from_extended_private_key(coin, xprv, derivation_strategy)
        self.copayer = self.device.add_copayer(account)

    def seed_from_mnemonic(
        self,
        mnemonic: str,
        coin: str = defaults.COIN,
        network: str = defaults.NETWORK,
        passphrase: Optional[str] = None,
        account: int = 0,
        derivation_strategy: str = defaults.DERIVATION_STRATEGY,
        lang: Optional[str] = None,
    ) -> None:
        "Seed from a BIP39 mnemonic, the language being detected if not given."
        self.device = Device.from_mnemonic(
            coin, network, mnemonic, passphrase, derivation_strategy, lang
        )
        self.copayer = self.device.add_copayer(account)

    def seed_from_extended_public_key(
        self,
        xpub: str,
        source: Optional[str],
        entropy_source_hex: str,
        device_pub_key: str,
        coin: str = defaults.COIN,
        network: str = defaults.NETWORK,
        account: int = 0,
        derivation_strategy: str = defaults.DERIVATION_STRATEGY,
    ) -> None:
        self.device = Device.from_extended_public_key(
            coin,
            network,
            xpub,
            source,
            entropy_source_hex,
            derivation_strategy,
            device_pub_key,
        )
        self.copayer = self.device.add_copayer(account)

    # device pass-throughs

    def get_mnemonic(self) -> Optional[str]:
        return self._require_device().get_mnemonic()

    def mnemonic_has_passphrase(self) -> bool:
        return self._require_device().mnemonic_has_passphrase

    def clear_mnemonic(self) -> None:
        self._require_device().clear_mnemonic()

    def get_keys(self, password: Optional[str] = None) -> Keys:
        return self._require_device().get_keys(password)

    def can_sign(self) -> bool:
        return bool(self.device) and self.device.can_sign()

    def is_priv_key_encrypted(self) -> bool:
        return bool(self.device) and self.device.is_priv_key_encrypted()

    def is_priv_key_external(self) -> bool:
        return bool(self.device) and self.device.has_external_source()

    def is_complete(self) -> bool:
        return bool(self.copayer) and self.copayer.is_complete()

    def check_password(self, password: str) -> Optional[bool]:
        """Return None if keys are not encrypted,
        else whether the password decrypts them."""
        if not self.is_priv_key_encrypted():
            return None
        try:
            return bool(self.get_keys(password).xprv)
        except DecryptionFailed:
            return False

    def encrypt_private_key(self, password: str, **opts: Any) -> None:
        self._require_device().encrypt_private_key(
            password, **(opts or defaults.PRIVATE_KEY_ENCRYPTION_OPTS)
        )

    def decrypt_private_key(self, password: str) -> None:
        self._require_device().decrypt_private_key(password)

    # backup

    def export(self, password: Optional[str] = None, no_sign: bool = False) -> str:
        """Return the JSON backup of the device.

        With no_sign, private material is left out;
        with a password, private material is exported decrypted.
        """
        device = Device.from_dict(self._require_device().to_dict())
        if no_sign:
            device.set_no_sign()
        elif password:
            device.decrypt_private_key(password)
        return json.dumps(device.to_dict())

    def import_(self, backup: str) -> None:
        try:
            device = Device.from_dict(json.loads(backup))
        except (ValueError, TypeError, KeyError, AttributeError, OWClientRuntimeError) as e:
            raise InvalidBackup("invalid backup") from e
        self.device = device
        self.copayer = device.copayers[0] if device.copayers else None

    # restore

    def _import(
        self, wallet_name: Optional[str] = None, copayer_name: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Restore the copayers of the device from the wallet service.

        Without any copayer a new 1-of-1 wallet is created.
        A copayer unknown to the service is given access
        with the device request key.
        """
        device = self._require_device()
        copayers = self.get_copayers(device.device_id)
        if not copayers:
            # TODO: scan accounts and addresses before creating a new wallet
            self.copayer = device.add_copayer(device.get_new_account())
            self.create_wallet(
                wallet_name or "my wallet",
                copayer_name or "my copayer",
                1,
                1,
                coin=device.coin,
                network=device.network,
            )
            return copayers

        for entry in copayers:
            account = entry.get("account") or 0
            self.copayer = device.get_copayer(account) or device.add_copayer(account)
            try:
                self.open_wallet()
            except NotAuthorized:
                raise
            except ProtocolError:
                if self.is_priv_key_external():
                    raise
                LOGGER.info("copayer not found, trying to add access")
                try:
                    self.add_access()
                except ProtocolError as e:
                    raise WalletDoesNotExist() from e
                self.open_wallet()

        self.copayer = device.copayers[0]
        return copayers

    def import_from_mnemonic(
        self,
        mnemonic: str,
        coin: str = defaults.COIN,
        network: str = defaults.NETWORK,
        passphrase: Optional[str] = None,
        derivation_strategy: str = defaults.DERIVATION_STRATEGY,
        wallet_name: Optional[str] = None,
        copayer_name: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        "Restore a device from its mnemonic, the language being detected."
        try:
            device = Device.from_mnemonic(
                coin, network, mnemonic, passphrase, derivation_strategy, None
            )
        except (ValueError, TypeError) as e:
            LOGGER.info("mnemonic error: %s", e)
            raise InvalidBackup("invalid mnemonic") from e
        self.device = device
        self.copayer = None
        return self._import(wallet_name, copayer_name)

    def import_from_extended_private_key(
        self,
        xprv: str,
        coin: str = defaults.COIN,
        derivation_strategy: str = defaults.DERIVATION_STRATEGY,
        wallet_name: Optional[str] = None,
        copayer_name: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        try:
            device = Device.from_extended_private_key(coin, xprv, derivation_strategy)
        except (ValueError, TypeError) as e:
            LOGGER.info("extended private key error: %s", e)
            raise InvalidBackup("invalid extended private key") from e
        self.device = device
        self.copayer = None
        return self._import(wallet_name, copayer_name)

    # key derivation

    def validate_key_derivation(
        self, passphrase: Optional[str] = None, skip_device_validation: bool = False
    ) -> bool:
        device = self._require_device()
        self.key_derivation_ok = self.validator.validate(
            device, passphrase, skip_device_validation
        )
        return self.key_derivation_ok

    # wallets

    def _process_wallet(self, wallet: Dict[str, Any], encrypting_key: Optional[str] = None) -> None:
        "Decrypt wallet and copayer names, keeping the encrypted ones."
        if encrypting_key is None:
            encrypting_key = self.copayer.shared_encrypting_key

        def decrypt_name(item: Dict[str, Any]) -> None:
            name = decrypt_message_no_throw(item.get("name"), encrypting_key)
            if name != item.get("name"):
                item["encryptedName"] = item.get("name")
            item["name"] = name

        decrypt_name(wallet)
        for copayer in wallet.get("copayers") or []:
            if not isinstance(copayer, dict):
                continue
            decrypt_name(copayer)
            for access in copayer.get("requestPubKeys") or []:
                if access.get("name"):
                    decrypt_name(access)

    def _process_custom_data(self, status: Dict[str, Any]) -> None:
        copayers = status["wallet"].get("copayers") or []
        me = _find_copayer(copayers, self.copayer.copayer_id)
        if not me or not me.get("customData"):
            return
        try:
            custom_data = json.loads(
                decrypt_message(me["customData"], self.device.personal_encrypting_key)
            )
        except (DecryptionFailed, ValueError, TypeError):
            LOGGER.warning("could not decrypt custom data: %s", me["customData"])
            return
        if not custom_data:
            return

        status["customData"] = custom_data
        if not self.copayer.wallet_priv_key and custom_data.get("walletPrivKey"):
            self.copayer.add_wallet_private_key(custom_data["walletPrivKey"])

    def _process_status(self, status: Dict[str, Any]) -> None:
        self._process_custom_data(status)
        self._process_wallet(status["wallet"])
        self.process_txps(status.get("pendingTxps"))

    def _do_join_wallet(
        self,
        wallet_id: str,
        wallet_priv_key: str,
        copayer_name: str,
        coin: str,
        dry_run: bool = False,
        custom_data: Optional[Dict[str, Any]] = None,
        entry: Optional[Mapping[str, Any]] = None,
        support_bip44: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Join the wallet as a copayer.

        By default the copayer is the current one; a public key ring
        entry joins on behalf of another participant.
        """
        device = self._require_device()
        copayer = self._require_copayer(complete=False)
        encrypting_key = shared_encrypting_key(wallet_priv_key)
        if entry is None:
            entry = {
                "xPubKey": copayer.xpub,
                "deviceId": device.device_id,
                "account": copayer.account,
                "requestPubKey": device.request_pub_key,
            }

        # the wallet private key is stored encrypted for this device only
        custom_data = dict(custom_data or {})
        custom_data["walletPrivKey"] = wallet_priv_key
        args: Dict[str, Any] = {
            "deviceId": entry.get("deviceId"),
            "walletId": wallet_id,
            "coin": coin,
            "name": encrypt_message(copayer_name, encrypting_key),
            "xPubKey": entry["xPubKey"],
            "account": entry.get("account"),
            "requestPubKey": entry.get("requestPubKey"),
            "customData": encrypt_message(
                json.dumps(custom_data), device.personal_encrypting_key
            ),
        }
        if dry_run:
            args["dryRun"] = True
        if support_bip44 is not None:
            args["supportBIP44"] = support_bip44
        copayer_hash = get_copayer_hash(args["name"], args["xPubKey"], args["requestPubKey"])
        args["copayerSignature"] = sign_message(copayer_hash, wallet_priv_key)

        body = self._do_post_request(f"/v1/wallets/{wallet_id}/copayers", args)
        self._process_wallet(body["wallet"], encrypting_key)
        return body["wallet"]

    def create_wallet(
        self,
        wallet_name: str,
        copayer_name: str,
        m: int,
        n: int,
        coin: str = defaults.COIN,
        network: str = defaults.NETWORK,
        single_address: bool = True,
        wallet_priv_key: Optional[str] = None,
        wallet_id: Optional[str] = None,
    ) -> str:
        """Create an m-of-n wallet and join it, returning the wallet id.

        A new device (with mnemonic) is created if none is seeded yet.
        """
        if not self._check_key_derivation():
            raise OWClientStateError("cannot create new wallet")
        _check_coin(coin)
        _check_network(network)

        if not self.device:
            LOGGER.info("generating new keys")
            self.seed_from_random_with_mnemonic(coin, network)
        else:
            LOGGER.info("using existing keys")
        device = self.device
        if coin != device.coin:
            raise InvalidCoin("existing keys were created for a different coin")
        if network != device.network:
            raise NetworkMismatch("existing keys were created for a different network")
        copayer = self._require_copayer(complete=False)

        wallet_priv_key = wallet_priv_key or new_prv_key()
        args = {
            "name": encrypt_message(wallet_name, shared_encrypting_key(wallet_priv_key)),
            "m": m,
            "n": n,
            "pubKey": pub_key_from_prv_key(wallet_priv_key),
            "coin": coin,
            "network": network,
            "singleAddress": bool(single_address),
            "id": wallet_id,
        }
        res = self._do_post_request("/v1/wallets/", args)
        wallet_id = res["walletId"]

        self._do_join_wallet(wallet_id, wallet_priv_key, copayer_name, coin)
        copayer.add_wallet_private_key(wallet_priv_key)
        copayer.add_wallet_info(
            device.device_id, wallet_id, wallet_name, m, n, device.request_pub_key, copayer_name
        )
        return wallet_id

    def join_wallet(
        self,
        wallet_id: str,
        wallet_priv_key: str,
        copayer_name: str,
        coin: str = defaults.COIN,
        network: str = defaults.NETWORK,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        "Join an existing wallet, given its id and wallet private key."
        if not self._check_key_derivation():
            raise OWClientStateError("cannot join wallet")
        _check_coin(coin)

        if not self.device:
            self.seed_from_random(coin, network)
        wallet = self._do_join_wallet(
            wallet_id, wallet_priv_key, copayer_name, coin, dry_run=dry_run
        )
        if not dry_run:
            self.copayer.add_wallet_private_key(wallet_priv_key)
            self.copayer.add_wallet_info(
                self.device.device_id,
                wallet["id"],
                wallet.get("name"),
                wallet["m"],
                wallet["n"],
                self.device.request_pub_key,
                copayer_name,
            )
        return wallet

    def open_wallet(self) -> Dict[str, Any]:
        """Fetch the wallet status, completing the copayer if possible.

        Once the wallet is complete, the public key ring is
        verified and then replaces the local one: the wallet
        metadata and the ring are applied only after verification.
        """
        copayer = self._require_copayer(complete=False)
        ret = self._do_get_request("/v1/wallets/?includeExtendedInfo=1")
        wallet = ret["wallet"]
        self._process_status(ret)

        if copayer.is_complete() and copayer.has_wallet_info():
            return ret

        copayers = wallet.get("copayers") or []
        complete = wallet.get("status") == "complete"
        if complete:
            n = copayer.n if copayer.has_wallet_info() else wallet.get("n")
            if copayer.wallet_priv_key:
                Verifier.assert_copayers(copayer, copayers, n)
            else:
                LOGGER.warning("could not verify copayers keys: missing wallet private key")

        if not copayer.has_wallet_info():
            me = _find_copayer(copayers, copayer.copayer_id)
            copayer.add_wallet_info(
                self.device.device_id,
                wallet["id"],
                wallet.get("name"),
                wallet["m"],
                wallet["n"],
                self.device.request_pub_key,
                me.get("name") if me else None,
            )
        if complete:
            copayer.add_public_key_ring(extract_public_key_ring(copayers))
        return ret

    def get_status(self, include_extended_info: bool = False) -> Dict[str, Any]:
        self._require_copayer(complete=False)
        query = urlencode({"includeExtendedInfo": "1" if include_extended_info else "0"})
        result = self._do_get_request(f"/v1/wallets/?{query}")
        self._process_status(result)
        return result

    def get_copayers(self, device_id: Optional[str] = None) -> List[Dict[str, Any]]:
        "Return the copayers of a device (by default, the current one) in any wallet."
        device_id = device_id or self._require_device().device_id
        return self._do_get_request(f"/v1/copayers/?{urlencode({'deviceId': device_id})}")

    def recreate_wallet(self) -> None:
        """Recreate the wallet of the current (complete) copayer.

        Every participant of the public key ring joins again;
        an already existing wallet is just re-accessed.
        """
        device = self._require_device()
        copayer = self._require_copayer()
        if not copayer.wallet_priv_key:
            raise OWClientStateError("missing wallet private key")

        try:
            self.get_status(include_extended_info=True)
        except ProtocolError:
            pass
        else:
            LOGGER.info("wallet is already created")
            return

        support_bip44 = device.derivation_strategy != DerivationStrategy.BIP45.value
        args = {
            "name": encrypt_message(
                copayer.wallet_name or "recovered wallet", copayer.shared_encrypting_key
            ),
            "m": copayer.m,
            "n": copayer.n,
            "pubKey": pub_key_from_prv_key(copayer.wallet_priv_key),
            "coin": device.coin,
            "network": device.network,
            "id": copayer.wallet_id,
            "supportBIP44": support_bip44,
        }
        try:
            body = self._do_post_request("/v1/wallets/", args)
        except WalletAlreadyExists:
            self.add_access()
            self.open_wallet()
            return
        wallet_id = copayer.wallet_id or body["walletId"]

        i = 1
        for entry in copayer.public_key_ring:
            name = entry.get("copayerName")
            if not name:
                name = f"copayer {i}"
                i += 1
            try:
                self._do_join_wallet(
                    wallet_id,
                    copayer.wallet_priv_key,
                    name,
                    device.coin,
                    entry=entry,
                    support_bip44=support_bip44,
                )
            except CopayerInWallet:
                LOGGER.debug("copayer already in wallet: %s", entry.get("xPubKey"))

    # access

    def add_access(
        self,
        generate_new_key: bool = False,
        name: Optional[str] = None,
        restrictions: Optional[Mapping[str, Any]] = None,
        password: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], str]:
        """Authorize a request key for the current copayer.

        The request public key is signed with the account extended
        private key, proving control of the copayer.
        Return the wallet and the authorized request private key.
        """
        device = self._require_device()
        if not device.can_sign():
            raise MissingPrivateKey("missing private key")
        copayer = self._require_copayer(complete=False)

        request_priv_key = new_prv_key() if generate_new_key else device.request_priv_key
        request_pub_key = pub_key_from_prv_key(request_priv_key)
        xprv = device.get_derived_xprv(copayer.account, password)
        args = {
            "copayerId": copayer.copayer_id,
            "requestPubKey": request_pub_key,
            "signature": sign_request_pub_key(request_pub_key, xprv),
            "name": encrypt_message(name, copayer.shared_encrypting_key) if name else None,
            "restrictions": restrictions,
        }
        res = self._do_put_request(f"/v1/copayers/{copayer.copayer_id}/", args)
        return res["wallet"], request_priv_key

    # addresses

    def create_address(self, ignore_max_gap: bool = False) -> Dict[str, Any]:
        "Create a new wallet address, checking it was correctly derived."
        copayer = self._require_copayer()
        if not self._check_key_derivation():
            raise OWClientStateError("cannot create new address for this wallet")

        args = {"ignoreMaxGap": True} if ignore_max_gap else {}
        address = self._do_post_request("/v1/addresses/", args)
        Verifier.assert_address(copayer, address)
        return address

    def get_main_addresses(
        self, limit: Optional[int] = None, reverse: bool = False, do_not_verify: bool = False
    ) -> List[Dict[str, Any]]:
        copayer = self._require_copayer()
        query: Dict[str, Any] = {}
        if limit:
            query["limit"] = limit
        if reverse:
            query["reverse"] = 1
        url = "/v1/addresses/" + (f"?{urlencode(query)}" if query else "")

        addresses = self._do_get_request(url)
        if not do_not_verify:
            for address in addresses:
                Verifier.assert_address(copayer, address)
        return addresses

    # transaction proposals

    def _process_tx_notes(self, notes: Any) -> None:
        if not notes:
            return
        encrypting_key = self.copayer.shared_encrypting_key
        for note in notes if isinstance(notes, list) else [notes]:
            note["encryptedBody"] = note.get("body")
            note["body"] = decrypt_message_no_throw(note.get("body"), encrypting_key)
            note["encryptedEditedByName"] = note.get("editedByName")
            note["editedByName"] = decrypt_message_no_throw(
                note.get("editedByName"), encrypting_key
            )

    def process_txps(self, txps: Any) -> None:
        "Decrypt, in place, the text fields of one or more proposals."
        if not txps:
            return
        encrypting_key = self.copayer.shared_encrypting_key
        for txp in txps if isinstance(txps, list) else [txps]:
            txp["encryptedMessage"] = txp.get("message")
            txp["message"] = decrypt_message_no_throw(txp.get("message"), encrypting_key) or None
            txp["creatorName"] = decrypt_message_no_throw(txp.get("creatorName"), encrypting_key)

            for action in txp.get("actions") or []:
                action["copayerName"] = decrypt_message_no_throw(
                    action.get("copayerName"), encrypting_key
                )
                action["comment"] = decrypt_message_no_throw(action.get("comment"), encrypting_key)

            params = txp.get("params")
            if txp.get("app") == "data" and isinstance(params, dict) and params.get("hasEncrypted"):
                data = decrypt_message_no_throw(
                    params.get("data"), self.device.personal_encrypting_key
                )
                if data and data != defaults.CANNOT_DECRYPT:
                    params["data"] = json.loads(data)
            self._process_tx_notes(txp.get("note"))

    def _get_create_tx_proposal_args(self, opts: Mapping[str, Any]) -> Dict[str, Any]:
        args = copy.deepcopy(dict(opts))
        message = opts.get("message")
        args["message"] = (
            encrypt_message(message, self.copayer.shared_encrypting_key) if message else None
        )
        params = args.get("params")
        if opts.get("app") == "data" and isinstance(params, dict) and params.get("hasEncrypted"):
            params["data"] = encrypt_message(
                json.dumps(opts["params"]["data"]), self.device.personal_encrypting_key
            )
        return args

    def create_tx_proposal(self, opts: Mapping[str, Any]) -> Dict[str, Any]:
        """Create a transaction proposal.

        opts carries app (e.g. "payment", "text", "data"),
        its params, and an optional message; the returned proposal
        is checked against the request.
        """
        copayer = self._require_copayer()
        if not copayer.shared_encrypting_key:
            raise OWClientStateError("missing shared encrypting key")
        if not opts or opts.get("params") is None:
            raise OWClientValueError("missing proposal params")

        args = self._get_create_tx_proposal_args(opts)
        txp = self._do_post_request("/v1/txproposals/", args)
        self.process_txps(txp)
        Verifier.assert_proposal_creation(args, txp, copayer.shared_encrypting_key)
        return txp

    def publish_tx_proposal(self, txp: Mapping[str, Any]) -> Dict[str, Any]:
        self._require_copayer()
        unit_hash = get_unit_hash_to_sign(txp["unit"])
        args = {"proposalSignature": sign_message(unit_hash, self.device.request_priv_key)}
        result = self._do_post_request(f"/v1/txproposals/{txp['id']}/publish/", args)
        self.process_txps(result)
        return result

    @staticmethod
    def sign_txp(txp: Mapping[str, Any], xprv: str, wallet_id: str) -> Dict[str, Any]:
        """Sign the unit of a proposal with the account extended private key.

        Only authors belonging to the wallet are signed, each at the
        signing path of the derived public key; the unit authentifiers
        are updated in place and returned by author address.
        """
        unit = txp["unit"]
        signing_info = txp["signingInfo"]
        unit_hash = get_unit_hash_to_sign(unit)
        signatures: Dict[str, Any] = {}
        for author in unit["authors"]:
            address = author["address"]
            info = signing_info.get(address)
            if not info or info.get("walletId") != wallet_id:
                continue
            pub_key = base64.b64encode(derive_public_key(xprv, info["path"])).decode("ascii")
            signing_paths = info.get("signingPaths") or {}
            authentifiers = author.setdefault("authentifiers", {})
            if pub_key in signing_paths:
                q = derive_private_key(xprv, info["path"])
                authentifiers[signing_paths[pub_key]] = sign_unit_hash(unit_hash, q)
            signatures[address] = authentifiers
        return signatures

    def sign_tx_proposal(
        self, txp: Dict[str, Any], password: Optional[str] = None
    ) -> Dict[str, Any]:
        copayer = self._require_copayer()
        if not txp.get("creatorId"):
            raise OWClientValueError("invalid proposal: missing creatorId")

        signatures = txp.get("signatures")
        if not signatures:
            if not self.can_sign():
                raise MissingPrivateKey("missing private key")
            if self.is_priv_key_encrypted() and not password:
                raise EncryptedPrivateKey("private key is encrypted, a password is needed")
            xprv = self.device.get_derived_xprv(copayer.account, password)
            signatures = self.sign_txp(txp, xprv, copayer.wallet_id)

        url = f"/v1/txproposals/{txp['id']}/signatures/"
        result = self._do_post_request(url, {"signatures": signatures})
        self.process_txps(result)
        return result

    def reject_tx_proposal(self, txp: Mapping[str, Any], reason: Optional[str]) -> Dict[str, Any]:
        copayer = self._require_copayer()
        args = {
            "reason": encrypt_message(reason, copayer.shared_encrypting_key) if reason else ""
        }
        result = self._do_post_request(f"/v1/txproposals/{txp['id']}/rejections/", args)
        self.process_txps(result)
        return result

    def broadcast_tx_proposal(self, txp: Mapping[str, Any]) -> Dict[str, Any]:
        self._require_copayer()
        result = self._do_post_request(f"/v1/txproposals/{txp['id']}/broadcast/", {})
        self.process_txps(result)
        return result

    def remove_tx_proposal(self, txp: Mapping[str, Any]) -> None:
        self._require_copayer()
        self._do_delete_request(f"/v1/txproposals/{txp['id']}")

    def get_tx_proposals(
        self,
        min_ts: Optional[int] = None,
        max_ts: Optional[int] = None,
        limit: Optional[int] = None,
        status: Optional[str] = None,
        app: Optional[str] = None,
        is_pending: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        self._require_copayer()
        if status and status not in TXP_STATUSES:
            raise OWClientValueError(f"invalid status: {status}")
        query = {
            "minTs": min_ts,
            "maxTs": max_ts,
            "limit": limit,
            "status": status,
            "app": app,
            "isPending": "true" if is_pending else None,
        }
        query = {k: v for k, v in query.items() if v}
        url = "/v1/txproposals/" + (f"?{urlencode(query)}" if query else "")
        txps = self._do_get_request(url)
        self.process_txps(txps)
        return txps

    # notifications

    def get_notifications(
        self,
        last_notification_id: Optional[str] = None,
        time_span: Optional[int] = None,
        include_own: bool = False,
    ) -> List[Dict[str, Any]]:
        """Return the latest wallet notifications, within a session.

        Notifications created by this copayer are left out,
        unless include_own is True.
        """
        copayer = self._require_copayer(complete=False)
        url = "/v1/notifications/"
        if last_notification_id:
            url += "?" + urlencode({"notificationId": last_notification_id})
        elif time_span:
            url += "?" + urlencode({"timeSpan": time_span})
        notifications = self._do_get_request_with_login(url)
        return [
            n
            for n in notifications or []
            if include_own or n.get("creatorId") != copayer.copayer_id
        ]
