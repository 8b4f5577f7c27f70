"""
Runtime configuration, read from the environment (and a .env file, loaded when
skim.main is imported) into one Settings object handed to every component.
"""

from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel


def _env(name: str, default: str) -> str:
    return os.environ.get(name, "") or default


class Settings(BaseModel):
    groq_api_key: Optional[str] = None
    model: str = "llama-3.3-70b-versatile"

    database_path: str = "data/skim.db"
    pdf_dir: str = "data/pdfs"

    # Seconds
    provider_timeout: float = 15.0
    download_timeout: float = 60.0
    ai_timeout: float = 120.0

    max_pdf_bytes: int = 100 * 1024 * 1024
    min_text_chars: int = 100
    analysis_max_chars: int = 150_000
    chat_max_chars: int = 50_000

    # USD per token
    input_cost_per_token: float = 0.000003
    output_cost_per_token: float = 0.000015

    ncbi_api_key: Optional[str] = None
    user_agent: str = "Skim-Research-Reader/1.0"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            groq_api_key=os.environ.get("GROQ_API_KEY") or None,
            model=_env("SKIM_MODEL", "llama-3.3-70b-versatile"),
            database_path=_env("SKIM_DATABASE_PATH", "data/skim.db"),
            pdf_dir=_env("SKIM_PDF_DIR", "data/pdfs"),
            provider_timeout=float(_env("SKIM_PROVIDER_TIMEOUT", "15")),
            download_timeout=float(_env("SKIM_DOWNLOAD_TIMEOUT", "60")),
            ai_timeout=float(_env("SKIM_AI_TIMEOUT", "120")),
            max_pdf_bytes=int(_env("SKIM_MAX_PDF_BYTES", str(100 * 1024 * 1024))),
            min_text_chars=int(_env("SKIM_MIN_TEXT_CHARS", "100")),
            analysis_max_chars=int(_env("SKIM_ANALYSIS_MAX_CHARS", "150000")),
            chat_max_chars=int(_env("SKIM_CHAT_MAX_CHARS", "50000")),
            input_cost_per_token=float(_env("SKIM_INPUT_COST_PER_TOKEN", "0.000003")),
            output_cost_per_token=float(_env("SKIM_OUTPUT_COST_PER_TOKEN", "0.000015")),
            ncbi_api_key=os.environ.get("NCBI_API_KEY") or None,
            user_agent=_env("SKIM_USER_AGENT", "Skim-Research-Reader/1.0"),
            log_level=_env("SKIM_LOG_LEVEL", "INFO"),
        )
