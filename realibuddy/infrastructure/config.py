"""Service configuration loaded from the environment."""

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ..domain.services.safety_governor import GovernorConfig
from ..domain.services.session_orchestrator import OrchestratorConfig

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid {name}={raw!r}, using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid {name}={raw!r}, using default {default}")
        return default


class RealiBuddyConfig(BaseModel):
    """Configuration for the whole service."""

    deepgram_api_key: str = ""
    perplexity_api_key: str = ""
    gemini_api_key: str = ""
    pavlok_api_token: str = ""

    base_zap_intensity: float = Field(default=30, ge=1, le=100)
    max_zaps_per_hour: int = Field(default=10, ge=1)
    zap_cooldown_ms: int = Field(default=5000, ge=0)

    database_url: str = "sqlite:///realibuddy.db"

    fact_check_timeout: float = Field(default=30.0, gt=0)
    actuation_timeout: float = Field(default=10.0, gt=0)
    transcription_timeout: float = Field(default=10.0, gt=0)
    ledger_timeout: float = Field(default=5.0, gt=0)

    max_claim_length: int = Field(default=1000, gt=0)
    fact_check_provider: str = "perplexity"
    stt_provider: str = "deepgram"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "RealiBuddyConfig":
        """Create configuration from environment variables."""
        config = cls(
            deepgram_api_key=os.getenv('DEEPGRAM_API_KEY', ''),
            perplexity_api_key=os.getenv('PERPLEXITY_API_KEY', ''),
            gemini_api_key=os.getenv('GEMINI_API_KEY', ''),
            pavlok_api_token=os.getenv('PAVLOK_API_TOKEN', ''),
            base_zap_intensity=_env_float('BASE_ZAP_INTENSITY', 30),
            max_zaps_per_hour=_env_int('MAX_ZAPS_PER_HOUR', 10),
            zap_cooldown_ms=_env_int('ZAP_COOLDOWN_MS', 5000),
            database_url=os.getenv('DATABASE_URL', 'sqlite:///realibuddy.db'),
            fact_check_timeout=_env_float('FACT_CHECK_TIMEOUT', 30.0),
            actuation_timeout=_env_float('ACTUATION_TIMEOUT', 10.0),
            transcription_timeout=_env_float('TRANSCRIPTION_TIMEOUT', 10.0),
            ledger_timeout=_env_float('LEDGER_TIMEOUT', 5.0),
            max_claim_length=_env_int('MAX_CLAIM_LENGTH', 1000),
            fact_check_provider=os.getenv('FACT_CHECK_PROVIDER', 'perplexity'),
            stt_provider=os.getenv('STT_PROVIDER', 'deepgram'),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        )

        for name, value in (
            ('DEEPGRAM_API_KEY', config.deepgram_api_key),
            ('GEMINI_API_KEY' if config.fact_check_provider == 'gemini' else 'PERPLEXITY_API_KEY',
             config.fact_check_api_key),
            ('PAVLOK_API_TOKEN', config.pavlok_api_token),
        ):
            if not value:
                logger.warning(f"⚠️ {name} not found in environment variables")

        return config

    @property
    def fact_check_api_key(self) -> str:
        """API key for the selected fact-check provider."""
        if self.fact_check_provider == "gemini":
            return self.gemini_api_key
        return self.perplexity_api_key

    def governor_config(self) -> GovernorConfig:
        return GovernorConfig(
            max_actuations_per_hour=self.max_zaps_per_hour,
            actuation_cooldown_ms=self.zap_cooldown_ms,
            ledger_timeout=self.ledger_timeout,
        )

    def orchestrator_config(self) -> OrchestratorConfig:
        return OrchestratorConfig(
            base_intensity=self.base_zap_intensity,
            max_claim_length=self.max_claim_length,
            fact_check_timeout=self.fact_check_timeout,
            actuation_timeout=self.actuation_timeout,
            transcription_timeout=self.transcription_timeout,
            ledger_timeout=self.ledger_timeout,
        )
