import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./fhir_bridge.db")
    DOWNLOAD_SECRET: str = os.getenv("DOWNLOAD_SECRET", "")
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    BRIDGE_BIN: str = os.getenv("BRIDGE_BIN", "kenya-fhir-bridge")
    TRANSFORM_TIMEOUT_SECONDS: float = float(os.getenv("TRANSFORM_TIMEOUT_SECONDS", "10"))
    AFYALINK_BASE_URL: str = os.getenv("AFYALINK_BASE_URL", "https://uat.dha.go.ke")
    AFYALINK_TOKEN: str = os.getenv("AFYALINK_TOKEN", "")


settings = Settings()
