import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        net_worth_debounce_ms: int,
        net_worth_history: int,
        default_savings_pct: float,
        default_debt_payoff_pct: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.net_worth_debounce_ms = net_worth_debounce_ms
        self.net_worth_history = net_worth_history
        self.default_savings_pct = default_savings_pct
        self.default_debt_payoff_pct = default_debt_payoff_pct


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("MONEYPLAN_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "moneyplan.db"
    database_url = os.getenv("MONEYPLAN_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("MONEYPLAN_TIMEZONE", "Europe/Berlin")
    net_worth_debounce_ms = int(os.getenv("MONEYPLAN_NET_WORTH_DEBOUNCE_MS", "100"))
    net_worth_history = int(os.getenv("MONEYPLAN_NET_WORTH_HISTORY", "6"))
    default_savings_pct = float(os.getenv("MONEYPLAN_DEFAULT_SAVINGS_PCT", "20"))
    default_debt_payoff_pct = float(
        os.getenv("MONEYPLAN_DEFAULT_DEBT_PAYOFF_PCT", "75")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        net_worth_debounce_ms=net_worth_debounce_ms,
        net_worth_history=net_worth_history,
        default_savings_pct=default_savings_pct,
        default_debt_payoff_pct=default_debt_payoff_pct,
    )
