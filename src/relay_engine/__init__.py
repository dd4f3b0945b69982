"""Relay-Engine: signed, retried outbound webhook delivery."""

__version__ = "0.1.0"

from relay_engine.signing.signature import generate_secret, sign, verify  # noqa: E402

__all__ = [
    "generate_secret",
    "sign",
    "verify",
]
