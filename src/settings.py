from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()

STRATEGY_ORACLE = "oracle"
STRATEGY_SEARCH = "search"


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or "").strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    tmdb_api_key: str = ""
    gemini_api_key: str = ""
    supabase_url: str = ""
    supabase_anon_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    candidate_strategy: str = STRATEGY_ORACLE
    watch_region: str = "US"
    tmdb_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "Settings":
        strategy = _env("CANDIDATE_STRATEGY", STRATEGY_ORACLE).lower()
        if strategy not in (STRATEGY_ORACLE, STRATEGY_SEARCH):
            strategy = STRATEGY_ORACLE
        return cls(
            tmdb_api_key=_env("TMDB_API_KEY"),
            gemini_api_key=_env("GEMINI_API_KEY"),
            # The frontend build exposes the same values under NEXT_PUBLIC_*.
            supabase_url=_env("SUPABASE_URL") or _env("NEXT_PUBLIC_SUPABASE_URL"),
            supabase_anon_key=_env("SUPABASE_ANON_KEY") or _env("NEXT_PUBLIC_SUPABASE_ANON_KEY"),
            gemini_model=_env("GEMINI_MODEL", "gemini-2.5-flash") or "gemini-2.5-flash",
            candidate_strategy=strategy,
            watch_region=(_env("WATCH_REGION", "US") or "US").upper(),
            tmdb_timeout_seconds=_env_float("TMDB_TIMEOUT_SECONDS", 10.0),
        )

    @property
    def uses_oracle(self) -> bool:
        return self.candidate_strategy == STRATEGY_ORACLE

    def missing_credentials(self) -> list[tuple[str, str]]:
        """
        Return (service, detail) pairs for every credential that is not set.

        Checked in the same order the request handler reports them:
        Supabase first, then Gemini (oracle strategy only), then TMDb.
        """
        missing: list[tuple[str, str]] = []
        if not self.supabase_url or not self.supabase_anon_key:
            missing.append(
                ("Supabase", "The SUPABASE_URL or SUPABASE_ANON_KEY environment variables are missing on the server.")
            )
        if self.uses_oracle and not self.gemini_api_key:
            missing.append(("Gemini", "The GEMINI_API_KEY is missing on the server."))
        if not self.tmdb_api_key:
            missing.append(("TMDB", "The TMDB_API_KEY is missing on the server."))
        return missing
