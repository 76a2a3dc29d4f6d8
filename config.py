import os
import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """
    Runtime configuration, read once from the environment and handed to every
    component at construction.
    """
    admin_api_key: str = Field("change-me", description="Value expected in the x-api-key header")
    upi_vpa: str = Field("", description="UPI payee address; empty disables UPI QR codes")
    upi_name: str = Field("Trizoverse", description="UPI payee display name")
    paytm_mid: str = ""
    paytm_merchant_key: str = ""
    paytm_website: str = "DEFAULT"
    paytm_env: Literal["staging", "production", "mock"] = "staging"
    paytm_callback_url: Optional[str] = None
    paytm_timeout: float = Field(15, gt=0, description="Seconds to wait on the Paytm gateway")
    upload_limit_bytes: int = Field(5 * 1024 * 1024, gt=0)
    port: int = 3000
    base_url: Optional[str] = None
    data_dir: Path = Path("data")
    uploads_dir: Path = Path("uploads")
    log_dir: Path = Path("logs")
    shipping_fee: float = Field(79, ge=0)
    free_shipping_threshold: float = Field(999, ge=0)
    currency: Literal["INR"] = "INR"

    @property
    def public_base_url(self) -> str:
        return self.base_url or f"http://localhost:{self.port}"

    @property
    def callback_url(self) -> str:
        return self.paytm_callback_url or f"{self.public_base_url}/payments/paytm/webhook"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        values = {
            "admin_api_key": env.get("ADMIN_API_KEY"),
            "upi_vpa": env.get("UPI_VPA"),
            "upi_name": env.get("UPI_NAME"),
            "paytm_mid": env.get("PAYTM_MID"),
            "paytm_merchant_key": env.get("PAYTM_MERCHANT_KEY"),
            "paytm_website": env.get("PAYTM_WEBSITE"),
            "paytm_env": env.get("PAYTM_ENV"),
            "paytm_callback_url": env.get("PAYTM_CALLBACK_URL"),
            "paytm_timeout": env.get("PAYTM_TIMEOUT"),
            "upload_limit_bytes": env.get("UPLOAD_LIMIT_BYTES"),
            "port": env.get("PORT"),
            "base_url": env.get("BASE_URL"),
            "data_dir": env.get("DATA_DIR"),
            "uploads_dir": env.get("UPLOADS_DIR"),
            "log_dir": env.get("LOG_DIR"),
            "shipping_fee": env.get("SHIPPING_FEE"),
            "free_shipping_threshold": env.get("FREE_SHIPPING_THRESHOLD"),
        }
        return cls(**{k: v for k, v in values.items() if v not in (None, "")})


LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings, level: int = logging.INFO) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)
    if not any(h.name == "store" for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        stream.set_name("store")
        root.addHandler(stream)
    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = settings.log_dir / "server.log"
        if not any(getattr(h, "baseFilename", None) == str(log_file.resolve()) for h in root.handlers):
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
    except OSError as e:
        root.warning("File logging disabled: %s", e)
