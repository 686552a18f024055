"""
Configuration management for EngageBrain
"""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration"""

    # Supabase (durable stores)
    SUPABASE_URL: str = os.getenv('SUPABASE_URL', '')
    SUPABASE_SERVICE_KEY: str = os.getenv('SUPABASE_SERVICE_KEY', '')

    # Generation provider
    OPENAI_API_KEY: str = os.getenv('OPENAI_API_KEY', '')
    GENERATION_MODEL: str = os.getenv('GENERATION_MODEL', 'gpt-4o-mini')
    LLM_PROVIDER: str = os.getenv('LLM_PROVIDER', 'mock')  # 'openai' or 'mock'
    LLM_TIMEOUT_SECONDS: float = float(os.getenv('LLM_TIMEOUT_SECONDS', '10'))

    # Retrieval (RAG)
    RAG_BASE_URL: str = os.getenv('RAG_BASE_URL', '')
    RAG_TIMEOUT_MS: int = int(os.getenv('RAG_TIMEOUT_MS', '800'))
    RAG_CONFIDENCE_THRESHOLD: float = float(os.getenv('RAG_CONFIDENCE_THRESHOLD', '0.7'))

    # Signal inference (AI core)
    AI_CORE_BASE_URL: str = os.getenv('AI_CORE_BASE_URL', '')
    AI_CORE_INTERNAL_SECRET: str = os.getenv('AI_CORE_INTERNAL_SECRET', '')
    SIGNAL_INFERENCE_TIMEOUT_SECONDS: float = float(os.getenv('SIGNAL_INFERENCE_TIMEOUT_SECONDS', '5'))

    # Circuit breaker
    CIRCUIT_FAILURE_THRESHOLD: int = int(os.getenv('CIRCUIT_FAILURE_THRESHOLD', '3'))
    CIRCUIT_RESET_TIMEOUT_SECONDS: float = float(os.getenv('CIRCUIT_RESET_TIMEOUT_SECONDS', '60'))

    # Safety
    SAFETY_MODE: str = os.getenv('SAFETY_MODE', 'ENFORCE')
    SAFETY_STORE_TIMEOUT_SECONDS: float = float(os.getenv('SAFETY_STORE_TIMEOUT_SECONDS', '2'))
    KILL_SWITCH_GLOBAL: bool = os.getenv('KILL_SWITCH_GLOBAL', 'false').lower() == 'true'
    KILL_SWITCH_PLATFORMS: str = os.getenv('KILL_SWITCH_PLATFORMS', '')  # comma separated

    # Rule tables
    RULES_DIR: Path = Path(os.getenv('ENGAGEBRAIN_RULES_DIR', str(Path(__file__).parent.parent / 'rules')))
    SIGNAL_LANGUAGE: str = os.getenv('SIGNAL_LANGUAGE', 'en')

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration for durable (Supabase-backed) mode"""
        required = {
            'SUPABASE_URL': cls.SUPABASE_URL,
            'SUPABASE_SERVICE_KEY': cls.SUPABASE_SERVICE_KEY,
        }

        missing = [k for k, v in required.items() if not v]

        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        return True

    @classmethod
    def get(cls, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get configuration value"""
        return getattr(cls, key, default)

    @classmethod
    def kill_switch_platforms(cls) -> list:
        """Platforms disabled through the environment kill switch"""
        return [p.strip().lower() for p in cls.KILL_SWITCH_PLATFORMS.split(',') if p.strip()]
