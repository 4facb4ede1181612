import logging
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

TRUE_VALUES = ("1", "true", "yes", "y", "on")


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    val = env.get(name)
    if val is None:
        return default
    return str(val).strip().lower() in TRUE_VALUES


class Settings(BaseModel):
    exchange_id: str = "coinbaseexchange"
    exchange_testnet: bool = False
    use_mock: bool = False
    mock_data_dir: str = "data"
    cache_dir: str = "cache"
    backtest_hours: int = 96
    backtest_offset_hours: int = 48
    workflow_timeout: float = 60
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if not isinstance(logging.getLevelName(value), int):
            raise ValueError(f"unknown log level {value!r}")
        return value

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "Settings":
        """Read settings from the environment, loading .env first unless told not to."""
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ
        defaults = cls()
        return cls(
            exchange_id=env.get("EXCHANGE_ID", defaults.exchange_id),
            exchange_testnet=_env_bool(env, "EXCHANGE_TESTNET", defaults.exchange_testnet),
            use_mock=_env_bool(env, "MOCK_DATA", defaults.use_mock),
            mock_data_dir=env.get("MOCK_DATA_DIR", defaults.mock_data_dir),
            cache_dir=env.get("CACHE_DIR", defaults.cache_dir),
            backtest_hours=env.get("BACKTEST_HOURS", defaults.backtest_hours),
            backtest_offset_hours=env.get("BACKTEST_OFFSET_HOURS", defaults.backtest_offset_hours),
            workflow_timeout=env.get("WORKFLOW_TIMEOUT", defaults.workflow_timeout),
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
        )
