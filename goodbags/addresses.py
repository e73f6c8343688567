from solders.pubkey import Pubkey
from solders.signature import Signature

from .errors import InvalidAddressError


def is_valid_solana_address(address: object) -> bool:
    """True when `address` is a base58 string that decodes to a 32-byte public key."""
    if not address or not isinstance(address, str):
        return False
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


def require_address(address: object, field: str) -> str:
    if not is_valid_solana_address(address):
        raise InvalidAddressError(field, address)
    return address  # type: ignore[return-value]


def verify_wallet_signature(wallet_address: str, message: str, signature: str) -> bool:
    """Checks a base58 ed25519 signature of `message` made by the wallet's key."""
    try:
        pubkey = Pubkey.from_string(wallet_address)
        sig = Signature.from_string(signature)
    except ValueError:
        return False
    return sig.verify(pubkey, message.encode("utf-8"))
