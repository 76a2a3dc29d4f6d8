import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from config import Settings, configure_logging


def test_from_env(monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "s3cret")
    monkeypatch.setenv("PAYTM_ENV", "production")
    monkeypatch.setenv("UPLOAD_LIMIT_BYTES", "1024")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("DATA_DIR", "/srv/store/data")
    monkeypatch.setenv("UPI_VPA", "")
    monkeypatch.delenv("BASE_URL", raising=False)
    monkeypatch.delenv("PAYTM_CALLBACK_URL", raising=False)

    settings = Settings.from_env()
    assert settings.admin_api_key == "s3cret"
    assert settings.paytm_env == "production"
    assert settings.upload_limit_bytes == 1024
    assert settings.data_dir == Path("/srv/store/data")
    assert settings.upi_vpa == ""
    assert settings.callback_url == "http://localhost:8080/payments/paytm/webhook"


def test_defaults():
    settings = Settings()
    assert settings.admin_api_key == "change-me"
    assert settings.shipping_fee == 79
    assert settings.free_shipping_threshold == 999
    assert settings.upload_limit_bytes == 5 * 1024 * 1024


def test_rejects_unknown_paytm_env():
    with pytest.raises(ValidationError):
        Settings(paytm_env="sandbox")


def test_configure_logging_writes_server_log(tmp_path):
    settings = Settings(log_dir=tmp_path / "logs")
    configure_logging(settings)
    logging.getLogger("tests").info("hello from tests")

    root = logging.getLogger()
    for handler in root.handlers:
        handler.flush()
    assert "hello from tests" in (tmp_path / "logs" / "server.log").read_text()

    for handler in list(root.handlers):
        if getattr(handler, "baseFilename", "").startswith(str(tmp_path)):
            root.removeHandler(handler)
            handler.close()


def test_configure_logging_adds_one_stream_handler(tmp_path):
    settings = Settings(log_dir=tmp_path / "logs")
    root = logging.getLogger()
    configure_logging(settings)
    configure_logging(settings)

    assert [h.name for h in root.handlers].count("store") == 1
    file_handlers = [h for h in root.handlers if getattr(h, "baseFilename", "").startswith(str(tmp_path))]
    assert len(file_handlers) == 1

    for handler in file_handlers:
        root.removeHandler(handler)
        handler.close()
