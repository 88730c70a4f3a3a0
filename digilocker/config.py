"""
config.py - Central configuration for the DigiLocker credential service
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Challenge-response
    PROTOCOL_NAME: str = "DigiLocker"
    NONCE_BYTES: int = 32
    NONCE_TTL_SECONDS: int = 300          # 5 minutes
    SWEEP_INTERVAL_SECONDS: int = 600     # 10 minutes

    # External collaborators (blob store, ledger)
    EXTERNAL_TIMEOUT_SECONDS: float = 10.0

    # Permissive defaults, see DESIGN.md
    STRICT_DISCLOSED_FIELDS: bool = False
    REQUIRE_PUBLIC_KEY: bool = False

    # Issuer identity. Default is Hardhat account #0, dev only.
    ISSUER_PRIVATE_KEY: str = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
    ISSUER_NAME: str = "Digital Identity Management System"
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    BBS_KEY_SEED: Optional[str] = None

    class Config:
        env_file = ".env"
        env_prefix = "DIGILOCKER_"


settings = Settings()
