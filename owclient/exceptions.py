#!/usr/bin/env python3

# Copyright (C) 2020-2022 The owclient developers
#
# This file is part of owclient. It is subject to the license terms in the
# LICENSE file found in the top-level directory of this distribution.
#
# No part of owclient including this file, may be copied, modified, propagated,
# or distributed except according to the terms contained in the LICENSE file.

"""Exception classes.

The three base classes are only meant to discriminate between Exceptions
being raised by owclient from those raised by other codebase:
users are usually fine dealing with the regular
ValueError, TypeError, and RuntimeError
from which the owclient versions are derived.

Input validation errors are ValueError, cryptographic and state errors are
RuntimeError. ServerCompromised is raised whenever a server response does
not match what the client has independently derived: it must never be
retried. ProtocolError subclasses mirror the error codes returned by the
wallet service and are looked up with error_from_code.
"""

from typing import Dict, Optional, Type


class OWClientValueError(ValueError):
    pass


class OWClientTypeError(TypeError):
    pass


class OWClientRuntimeError(RuntimeError):
    pass


# input validation


class InvalidCoin(OWClientValueError):
    pass


class InvalidNetwork(OWClientValueError):
    pass


class NetworkMismatch(OWClientValueError):
    pass


class InvalidDerivationStrategy(OWClientValueError):
    pass


class InsufficientEntropy(OWClientValueError):
    pass


class InvalidPath(OWClientValueError):
    pass


class InvalidAddressType(OWClientValueError):
    pass


class RingSizeMismatch(OWClientValueError):
    pass


class InvalidBackup(OWClientValueError):
    pass


# cryptographic and state errors


class DecryptionFailed(OWClientRuntimeError):
    pass


class EncryptionError(OWClientRuntimeError):
    pass


class OWClientStateError(OWClientRuntimeError):
    pass


class MissingPrivateKey(OWClientStateError):
    pass


class EncryptedPrivateKey(OWClientStateError):
    pass


# trust


class ServerCompromised(OWClientRuntimeError):
    code = "SERVER_COMPROMISED"

    def __init__(self, message: str = "Server response could not be verified") -> None:
        super().__init__(message)


# protocol


class ProtocolError(OWClientRuntimeError):
    "Error reported by the wallet service."

    code = "UNKNOWN"
    default_message = "Unknown error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ConnectionError_(ProtocolError):
    code = "CONNECTION_ERROR"
    default_message = "Wallet service connection error"


class ConnectionReset(ProtocolError):
    code = "ECONNRESET_ERROR"
    default_message = "Connection reset by the wallet service"


class NotFound(ProtocolError):
    code = "NOT_FOUND"
    default_message = "Wallet service not found"


class NotAuthorized(ProtocolError):
    code = "NOT_AUTHORIZED"
    default_message = "Not authorized"


class WalletNotFound(ProtocolError):
    code = "WALLET_NOT_FOUND"
    default_message = "Wallet not found"


class WalletDoesNotExist(ProtocolError):
    code = "WALLET_DOES_NOT_EXIST"
    default_message = "Wallet does not exist"


class WalletAlreadyExists(ProtocolError):
    code = "WALLET_ALREADY_EXISTS"
    default_message = "Wallet already exists"


class WalletFull(ProtocolError):
    code = "WALLET_FULL"
    default_message = "Wallet full"


class CopayerInWallet(ProtocolError):
    code = "COPAYER_IN_WALLET"
    default_message = "Copayer already in wallet"


class CopayerVoted(ProtocolError):
    code = "COPAYER_VOTED"
    default_message = "Copayer already voted on this transaction proposal"


class KeyInCopayer(ProtocolError):
    code = "KEY_IN_COPAYER"
    default_message = "Key already registered"


class InsufficientFunds(ProtocolError):
    code = "INSUFFICIENT_FUNDS"
    default_message = "Insufficient funds"


class InsufficientFundsForFee(ProtocolError):
    code = "INSUFFICIENT_FUNDS_FOR_FEE"
    default_message = "Insufficient funds for fee"


class LockedFunds(ProtocolError):
    code = "LOCKED_FUNDS"
    default_message = "Locked funds"


class UnconfirmedInputsNotAccepted(ProtocolError):
    code = "UNCONFIRMED_INPUTS_NOT_ACCEPTED"
    default_message = "Can not create transactions with unconfirmed inputs"


class InvalidChangeAddress(ProtocolError):
    code = "INVALID_CHANGE_ADDRESS"
    default_message = "Invalid change address"


class CouldNotBuildTransaction(ProtocolError):
    code = "COULD_NOT_BUILD_TRANSACTION"
    default_message = "Could not build transaction"


class TxNotFound(ProtocolError):
    code = "TX_NOT_FOUND"
    default_message = "Transaction proposal not found"


class TxNotPending(ProtocolError):
    code = "TX_NOT_PENDING"
    default_message = "The transaction proposal is not pending"


class TxAlreadyBroadcasted(ProtocolError):
    code = "TX_ALREADY_BROADCASTED"
    default_message = "The transaction proposal is already broadcasted"


class TxCannotRemove(ProtocolError):
    code = "TX_CANNOT_REMOVE"
    default_message = "Cannot remove this transaction proposal yet"


ERRORS: Dict[str, Type[ProtocolError]] = {
    cls.code: cls
    for cls in (
        ConnectionError_,
        ConnectionReset,
        NotFound,
        NotAuthorized,
        WalletNotFound,
        WalletDoesNotExist,
        WalletAlreadyExists,
        WalletFull,
        CopayerInWallet,
        CopayerVoted,
        KeyInCopayer,
        InsufficientFunds,
        InsufficientFundsForFee,
        LockedFunds,
        UnconfirmedInputsNotAccepted,
        InvalidChangeAddress,
        CouldNotBuildTransaction,
        TxNotFound,
        TxNotPending,
        TxAlreadyBroadcasted,
        TxCannotRemove,
    )
}


def error_from_code(code: str, message: Optional[str] = None) -> ProtocolError:
    """Return the ProtocolError instance for a wallet service error code.

    Unknown codes are mapped to a generic ProtocolError
    carrying both code and message.
    """
    if code in ERRORS:
        return ERRORS[code](message)
    err = ProtocolError(f"{code}: {message}")
    err.code = code
    return err
