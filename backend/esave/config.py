from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "esave-engine")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "eSave")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Principal allowed to run admin transitions on every component
    authority_principal: str = os.getenv("AUTHORITY_PRINCIPAL", "ST1TEST")
    genesis_height: int = int(os.getenv("GENESIS_HEIGHT", "0"))
    # Local hosting only: issuer account paying claims, and seed balance for the authority (fees)
    treasury_principal: str = os.getenv("TREASURY_PRINCIPAL", ".reward-distributor")
    authority_float: int = int(os.getenv("AUTHORITY_FLOAT", "1000000"))

    # Savings calculator defaults (kWh, block counts, fee in token units)
    max_data_points: int = int(os.getenv("MAX_DATA_POINTS", "100"))
    min_kwh_threshold: int = int(os.getenv("MIN_KWH_THRESHOLD", "10"))
    max_kwh_threshold: int = int(os.getenv("MAX_KWH_THRESHOLD", "100000"))
    baseline_duration: int = int(os.getenv("BASELINE_DURATION", "7"))
    update_fee: int = int(os.getenv("UPDATE_FEE", "100"))
    oracle_contract: str | None = os.getenv("ORACLE_CONTRACT") or None
    calculator_registry_contract: str | None = os.getenv("CALCULATOR_REGISTRY_CONTRACT") or None
    oracle_secret: str = os.getenv("ORACLE_SECRET", "dev-oracle-secret-change-me")

    # Reward distributor references
    token_contract: str = os.getenv("TOKEN_CONTRACT", ".esave-token")
    calculator_contract: str = os.getenv("CALCULATOR_CONTRACT", ".savings-calculator")
    registry_contract: str = os.getenv("REGISTRY_CONTRACT", ".challenge-registry")

settings = Settings()
