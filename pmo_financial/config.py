"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

EAC_FALLBACKS = ("bac_plus_cv", "bac", "ac_plus_remaining")

DEFAULT_ALLOWED_ORIGINS = (
    "https://claude.ai",
    "https://www.claude.ai",
    "https://app.claude.ai",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
)


def _split_csv(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class EVMPolicy:
    """Fallbacks applied when an EVM ratio has a zero or negative denominator.

    ``eac_fallback`` selects the EAC used when CPI is not positive:

    * ``bac_plus_cv``: BAC + |CV|
    * ``bac``: BAC unchanged
    * ``ac_plus_remaining``: AC + (BAC - EV)

    ``tcpi_exhausted_value`` is reported as TCPI once the remaining budget
    (BAC - AC) is used up.
    """

    eac_fallback: str = "bac_plus_cv"
    tcpi_exhausted_value: float = 0.0

    def __post_init__(self) -> None:
        if self.eac_fallback not in EAC_FALLBACKS:
            raise ValueError(
                f"Unknown EAC fallback '{self.eac_fallback}'. Expected one of: {', '.join(EAC_FALLBACKS)}"
            )

    @classmethod
    def from_environment(cls) -> "EVMPolicy":
        return cls(
            eac_fallback=os.getenv("EVM_EAC_FALLBACK", "bac_plus_cv").strip().lower(),
            tcpi_exhausted_value=float(os.getenv("EVM_TCPI_EXHAUSTED_VALUE", "0")),
        )


DEFAULT_EVM_POLICY = EVMPolicy()


@dataclass
class Settings:
    """Service settings.

    Values default to a local, in-memory setup so the server can start
    without a spreadsheet.
    """

    spreadsheet_id: Optional[str] = None
    sheets_access_token: Optional[str] = None
    sheets_api_url: str = "https://sheets.googleapis.com/v4"
    sheets_timeout: float = 30.0
    row_store: str = "memory"
    host: str = "127.0.0.1"
    port: int = 8000
    log_dir: str = "/var/log/pmo-financial"
    log_level: str = "INFO"
    allowed_origins: Tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    evm_policy: EVMPolicy = field(default_factory=EVMPolicy)
    snapshot_program_ids: List[str] = field(default_factory=list)
    snapshot_time: str = "06:00"
    session_ttl_seconds: int = 3600

    @classmethod
    def from_environment(cls) -> "Settings":
        spreadsheet_id = os.getenv("FINANCIAL_SPREADSHEET_ID")
        origins = _split_csv(os.getenv("ALLOWED_ORIGINS"))
        return cls(
            spreadsheet_id=spreadsheet_id,
            sheets_access_token=os.getenv("GOOGLE_SHEETS_ACCESS_TOKEN"),
            sheets_api_url=os.getenv("GOOGLE_SHEETS_API_URL", "https://sheets.googleapis.com/v4"),
            sheets_timeout=float(os.getenv("SHEETS_TIMEOUT", "30")),
            row_store=os.getenv("ROW_STORE", "sheets" if spreadsheet_id else "memory").lower(),
            host=os.getenv("MCP_HOST", "127.0.0.1"),
            port=int(os.getenv("MCP_PORT", "8000")),
            log_dir=os.getenv("LOG_DIR", "/var/log/pmo-financial"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            allowed_origins=tuple(origins) if origins else DEFAULT_ALLOWED_ORIGINS,
            evm_policy=EVMPolicy.from_environment(),
            snapshot_program_ids=_split_csv(os.getenv("SNAPSHOT_PROGRAM_IDS")),
            snapshot_time=os.getenv("SNAPSHOT_TIME", "06:00"),
            session_ttl_seconds=int(os.getenv("MCP_SESSION_TTL", "3600")),
        )
