# commute_eta/settings.py
"""
환경변수(.env) 기반 설정

API 키 누락은 네트워크 호출 전에 ConfigurationError 로 즉시 알린다.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel

from .constants import ARRIVAL_CACHE_TTL_SEC, HTTP_TIMEOUT
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent  # 저장소 루트
DEFAULT_DB_PATH = BASE_DIR / "commute_eta.db"


class Settings(BaseModel):
    """런타임 설정"""
    data_go_kr_api_key: str = ""
    seoul_opendata_api_key: str = ""
    database_url: str = f"sqlite:///{DEFAULT_DB_PATH}"
    http_timeout: float = HTTP_TIMEOUT
    arrival_cache_ttl: float = ARRIVAL_CACHE_TTL_SEC
    frontend_urls: List[str] = ["http://localhost:3000"]

    def require_data_go_kr_key(self) -> str:
        if not self.data_go_kr_api_key:
            raise ConfigurationError("DATA_GO_KR_API_KEY가 설정되지 않았습니다.")
        return self.data_go_kr_api_key

    def require_seoul_key(self) -> str:
        if not self.seoul_opendata_api_key:
            raise ConfigurationError("SEOUL_OPENDATA_API_KEY가 설정되지 않았습니다.")
        return self.seoul_opendata_api_key


def _env_float(name: str, fallback: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return fallback
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using %s", name, raw, fallback)
        return fallback


def load_settings() -> Settings:
    """
    .env 를 읽어 Settings 를 구성한다.
    이미 설정된 환경변수가 .env 보다 우선한다.
    """
    load_dotenv()

    raw_origins = os.getenv("FRONTEND_URL", "http://localhost:3000")
    frontend_urls = [o.strip() for o in raw_origins.split(",") if o.strip()]

    return Settings(
        data_go_kr_api_key=os.getenv("DATA_GO_KR_API_KEY", "").strip(),
        seoul_opendata_api_key=os.getenv("SEOUL_OPENDATA_API_KEY", "").strip(),
        database_url=os.getenv("DATABASE_URL", f"sqlite:///{DEFAULT_DB_PATH}").strip(),
        http_timeout=_env_float("HTTP_TIMEOUT_SECONDS", HTTP_TIMEOUT),
        arrival_cache_ttl=_env_float("ARRIVAL_CACHE_TTL_SECONDS", ARRIVAL_CACHE_TTL_SEC),
        frontend_urls=frontend_urls,
    )
