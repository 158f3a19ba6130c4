from __future__ import annotations

from typing import Any

from loguru import logger
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from engine.errors import ConfigError

DEFAULT_SYMBOLS = (
    "C4EUSDT,PONCHUSDT,GLUTEUUSDT,BLENDUSDT,KCSUSDT,WRLDUSDT,BABYDOGE2USDT,AGNTUSDT,LOOPUSDT,BURGERUSDT,"
    "FILUSDT,TRUMP1USDT,ATTUSDT,CELLUSDT,SHIBAUSDT,RAYUSDC,GMEUSDT,SEEDUSDT,MEMESAIUSDT,CATDOGUSDT,"
    "FLOKIUSDT,MATHUSDT,MXUSDT,ANVLUSDT,BITCOINAIUSDT,DRIFTUSDT,MLUSDT,NEIROETHUSDT,BOOUSDT,DMTRUSDT"
)


class BotSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    API_KEY: str = ""
    API_SECRET: str = ""
    BASE_URL: str = "https://api.mexc.com"
    EXCHANGE: str = "mexc"
    DRY_RUN: bool = True
    STRATEGY: str = "multi_signal"
    ACCOUNT_BALANCE: float = 150.0
    RISK_PERCENT: float = 1.0
    STOP_LOSS_PCT: float = 2.0
    TAKE_PROFIT_PCT: float = 5.0
    TRAILING_STOP_PCT: float = 1.0
    ATR_THRESHOLD: float = 1.0
    MIN_SIGNAL_SCORE: int = 3
    RSI_OVERSOLD: float = 30.0
    SYMBOLS: str = DEFAULT_SYMBOLS
    TIMEFRAME: str = "1m"
    CANDLE_LIMIT: int = 200
    FETCH_CONCURRENCY: int = 5
    ORDER_TIMEOUT_SECONDS: float = 15.0
    MAX_POSITION_SIZE: float = 10.0
    DAILY_LOSS_LIMIT_PCT: float = -10.0
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""
    ADMIN_TELEGRAM_IDS: str = ""
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "bot.log"


class RuntimeConfig(BaseModel):
    api_key: str = ""
    api_secret: str = ""
    base_url: str = "https://api.mexc.com"
    exchange: str = "mexc"
    dry_run: bool = True
    strategy: str = "multi_signal"
    account_balance: float = 150.0
    risk_percent: float = 0.01
    stop_loss_pct: float = 0.02
    take_profit_pct: float = 0.05
    trailing_stop_pct: float = 0.01
    atr_threshold: float = 1.0
    min_signal_score: int = 3
    rsi_oversold: float = 30.0
    symbols: list[str] = []
    timeframe: str = "1m"
    candle_limit: int = 200
    fetch_concurrency: int = 5
    order_timeout_seconds: float = 15.0
    max_position_size: float = 10.0
    daily_loss_limit: float = -0.1

    def validate_values(self) -> list[str]:
        errors = []
        if not self.dry_run and self.exchange != "paper":
            if not self.api_key:
                errors.append("API_KEY is required for live trading")
            if not self.api_secret:
                errors.append("API_SECRET is required for live trading")
        if self.account_balance <= 0:
            errors.append("ACCOUNT_BALANCE must be greater than 0")
        if self.risk_percent <= 0 or self.risk_percent > 0.1:
            errors.append("RISK_PERCENT should be between 0.1 and 10 (%)")
        for name in ("stop_loss_pct", "take_profit_pct", "trailing_stop_pct"):
            value = getattr(self, name)
            if value <= 0 or value >= 1:
                errors.append(f"{name.upper()} must be between 0 and 100 (%)")
        if self.atr_threshold <= 0:
            errors.append("ATR_THRESHOLD must be greater than 0")
        if not 0 <= self.min_signal_score <= 5:
            errors.append("MIN_SIGNAL_SCORE must be between 0 and 5")
        if not 0 < self.rsi_oversold < 100:
            errors.append("RSI_OVERSOLD must be between 0 and 100")
        if self.max_position_size <= 0:
            errors.append("MAX_POSITION_SIZE must be greater than 0")
        if not -1 < self.daily_loss_limit < 0:
            errors.append("DAILY_LOSS_LIMIT_PCT must be between -100 and 0 (%)")
        return errors

    def public_dict(self) -> dict[str, Any]:
        data = self.model_dump()
        data["api_key"] = "********" if self.api_key else None
        data["api_secret"] = "********" if self.api_secret else None
        return data


class ConfigService:
    def __init__(self, base: BotSettings) -> None:
        self.base = base
        self._overrides: dict[str, Any] = {}

    def load(self) -> RuntimeConfig:
        def _get(key: str) -> Any:
            return self._overrides.get(key, getattr(self.base, key))

        config = RuntimeConfig(
            api_key=_get("API_KEY"),
            api_secret=_get("API_SECRET"),
            base_url=_get("BASE_URL"),
            exchange=_get("EXCHANGE"),
            dry_run=bool(_get("DRY_RUN")),
            strategy=_get("STRATEGY"),
            account_balance=float(_get("ACCOUNT_BALANCE")),
            risk_percent=float(_get("RISK_PERCENT")) / 100.0,
            stop_loss_pct=float(_get("STOP_LOSS_PCT")) / 100.0,
            take_profit_pct=float(_get("TAKE_PROFIT_PCT")) / 100.0,
            trailing_stop_pct=float(_get("TRAILING_STOP_PCT")) / 100.0,
            atr_threshold=float(_get("ATR_THRESHOLD")),
            min_signal_score=int(_get("MIN_SIGNAL_SCORE")),
            rsi_oversold=float(_get("RSI_OVERSOLD")),
            symbols=[s.strip().upper() for s in str(_get("SYMBOLS")).split(",") if s.strip()],
            timeframe=_get("TIMEFRAME"),
            candle_limit=int(_get("CANDLE_LIMIT")),
            fetch_concurrency=max(1, int(_get("FETCH_CONCURRENCY"))),
            order_timeout_seconds=float(_get("ORDER_TIMEOUT_SECONDS")),
            max_position_size=float(_get("MAX_POSITION_SIZE")),
            daily_loss_limit=float(_get("DAILY_LOSS_LIMIT_PCT")) / 100.0,
        )
        errors = config.validate_values()
        if not errors:
            return config

        missing_keys = not config.dry_run and config.exchange != "paper" and (not config.api_key or not config.api_secret)
        if missing_keys:
            logger.warning("Switching to dry run mode due to missing API credentials")
            config.dry_run = True
            errors = config.validate_values()
        if errors:
            for err in errors:
                logger.error("Configuration validation failed: {}", err)
            raise ConfigError(errors)
        return config

    def update(self, key: str, value: Any) -> None:
        if not hasattr(self.base, key):
            raise KeyError(f"Unknown setting: {key}")
        self._overrides[key] = value
