"""CryptoDevs DAO: NFT-gated governance ledger and its service layer."""

__version__ = "0.1.0"

__all__ = ["__version__"]
