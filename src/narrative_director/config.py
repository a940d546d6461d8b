"""Configuration management for Narrative Director."""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings, loaded from environment and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ND_",
    )

    # Ollama (local LLM)
    ollama_base_url: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="llama3.1:8b")

    # Hugging Face Inference API
    hf_api_key: str = Field(default="")
    hf_model: str = Field(default="meta-llama/Llama-3.1-70B-Instruct")
    hf_api_url: str = Field(default="https://router.huggingface.co/v1/chat/completions")
    llm_provider: str = Field(default="ollama", description="ollama or huggingface")

    # Generation
    generation_timeout: float = Field(default=30.0, description="Seconds before a generation call is abandoned")
    generation_retries: int = Field(default=0, description="Extra tries after a failed first generation call (0 goes straight to the template)")
    generation_temperature: float = Field(default=0.8)
    revision_temperature: float = Field(default=0.3)
    judge_temperature: float = Field(default=0.2)
    max_tokens: int = Field(default=1500)

    # Validation
    consistency_threshold: float = Field(default=85.0, description="Rule-compliance pass mark (0-100)")
    self_consistency_low: float = Field(default=70.0, description="Lower edge of the borderline band")
    self_consistency_variations: int = Field(default=3)
    self_consistency_agreement: float = Field(default=0.7)
    max_revision_attempts: int = Field(default=2)

    # Memory
    working_memory_limit: int = Field(default=10)
    episode_summary_limit: int = Field(default=5)
    retrieval_top_k: int = Field(default=5)
    compression_trigger: int = Field(default=20, description="Active events before compression runs")
    compression_batch: int = Field(default=10)
    summary_word_limit: int = Field(default=500)

    # Need evaluation
    anchor_interval: int = Field(default=5, description="Completed quests between theme anchors")
    max_active_quests: int = Field(default=3)
    max_unresolved_threads: int = Field(default=5)
    stale_content_hours: float = Field(default=24.0)
    stat_imbalance_gap: float = Field(default=5.0)

    # Paths
    data_dir: Path = Field(default=Path("data"))
    rules_file: Path | None = Field(default=None, description="JSON rule set, built-in default if unset")
    storylets_file: Path | None = Field(default=None, description="JSON storylet catalog to add to the defaults")

    log_level: str = Field(default="INFO")

    @property
    def snapshot_path(self) -> Path:
        return self.data_dir / "world_state.json"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass
class DirectorConfig:
    """Tunables consumed by the orchestration pipeline."""

    consistency_threshold: float = 85.0
    self_consistency_low: float = 70.0
    self_consistency_variations: int = 3
    self_consistency_agreement: float = 0.7
    self_consistency_enabled: bool = True
    max_revision_attempts: int = 2

    generation_timeout: float = 30.0
    generation_retries: int = 0
    generation_temperature: float = 0.8
    revision_temperature: float = 0.3
    judge_temperature: float = 0.2
    max_tokens: int = 1500

    working_memory_limit: int = 10
    episode_summary_limit: int = 5
    retrieval_top_k: int = 5
    compression_trigger: int = 20
    compression_batch: int = 10
    summary_word_limit: int = 500

    anchor_interval: int = 5
    max_active_quests: int = 3
    max_unresolved_threads: int = 5
    stale_content_hours: float = 24.0
    stat_imbalance_gap: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "DirectorConfig":
        """Build a pipeline config from application settings."""
        settings = settings or get_settings()
        return cls(
            consistency_threshold=settings.consistency_threshold,
            self_consistency_low=settings.self_consistency_low,
            self_consistency_variations=settings.self_consistency_variations,
            self_consistency_agreement=settings.self_consistency_agreement,
            max_revision_attempts=settings.max_revision_attempts,
            generation_timeout=settings.generation_timeout,
            generation_retries=settings.generation_retries,
            generation_temperature=settings.generation_temperature,
            revision_temperature=settings.revision_temperature,
            judge_temperature=settings.judge_temperature,
            max_tokens=settings.max_tokens,
            working_memory_limit=settings.working_memory_limit,
            episode_summary_limit=settings.episode_summary_limit,
            retrieval_top_k=settings.retrieval_top_k,
            compression_trigger=settings.compression_trigger,
            compression_batch=settings.compression_batch,
            summary_word_limit=settings.summary_word_limit,
            anchor_interval=settings.anchor_interval,
            max_active_quests=settings.max_active_quests,
            max_unresolved_threads=settings.max_unresolved_threads,
            stale_content_hours=settings.stale_content_hours,
            stat_imbalance_gap=settings.stat_imbalance_gap,
        )
