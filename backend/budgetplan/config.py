from __future__ import annotations

import functools
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


class ImportConfig(BaseModel):
    rh_sheet: str = "RH_Budget_SUBM"
    materials_sheet: str = "Outros_Budget"
    report_sheet: str = "REPORT"
    match_threshold: float = Field(0.6, ge=0.0, le=1.0)
    hiring_match_threshold: float = Field(0.85, ge=0.0, le=1.0)
    salary_name_column: int = Field(5, ge=0)


class Settings:
    """Runtime configuration read from ``BUDGETPLAN_*`` environment variables."""

    def __init__(
        self,
        *,
        storage_dir: Optional[Path] = None,
        match_threshold: Optional[float] = None,
        hiring_match_threshold: Optional[float] = None,
        log_level: Optional[str] = None,
        cors_origins: Optional[List[str]] = None,
    ) -> None:
        storage_env = os.getenv("BUDGETPLAN_STORAGE_DIR")
        self.storage_dir = storage_dir or (Path(storage_env) if storage_env else BASE_DIR / "storage")
        if match_threshold is None:
            threshold_env = os.getenv("BUDGETPLAN_MATCH_THRESHOLD")
            match_threshold = float(threshold_env) if threshold_env else 0.6
        self.match_threshold = match_threshold
        if hiring_match_threshold is None:
            hiring_env = os.getenv("BUDGETPLAN_HIRING_MATCH_THRESHOLD")
            hiring_match_threshold = float(hiring_env) if hiring_env else 0.85
        self.hiring_match_threshold = hiring_match_threshold
        self.log_level = (log_level or os.getenv("BUDGETPLAN_LOG_LEVEL", "INFO")).upper()
        origins_env = os.getenv("BUDGETPLAN_CORS_ORIGINS", "*")
        self.cors_origins = cors_origins or [origin.strip() for origin in origins_env.split(",") if origin.strip()]
        self.rh_sheet = os.getenv("BUDGETPLAN_RH_SHEET", "RH_Budget_SUBM")
        self.materials_sheet = os.getenv("BUDGETPLAN_MATERIALS_SHEET", "Outros_Budget")
        self.report_sheet = os.getenv("BUDGETPLAN_REPORT_SHEET", "REPORT")

    @property
    def uploads_dir(self) -> Path:
        return self.storage_dir / "uploads"

    @property
    def projects_dir(self) -> Path:
        return self.storage_dir / "projects"

    def import_config(self) -> ImportConfig:
        return ImportConfig(
            rh_sheet=self.rh_sheet,
            materials_sheet=self.materials_sheet,
            report_sheet=self.report_sheet,
            match_threshold=self.match_threshold,
            hiring_match_threshold=self.hiring_match_threshold,
        )


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
