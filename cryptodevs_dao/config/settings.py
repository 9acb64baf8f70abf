from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# FakeNFTMarketplace 的固定售價：0.1 ether
DEFAULT_NFT_PRICE_WEI = 10**17


class DaoSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CRYPTODEVS_DAO_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    voting_window_seconds: int = Field(default=300, gt=0)
    nft_price_wei: int = Field(default=DEFAULT_NFT_PRICE_WEI, ge=0)
    owner_address: str = Field(default="")
    persistence_enabled: bool = False
    log_level: str = "INFO"

    @field_validator("owner_address")
    @classmethod
    def _strip_owner(cls, v: str) -> str:
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unsupported log level: {v!r}")
        return level


@lru_cache(maxsize=1)
def get_settings() -> DaoSettings:
    return DaoSettings()
