# SPDX-License-Identifier: AGPL-3.0-only

"""
Configuration service for the extraction system.

This module centralizes all configuration settings for the extraction pipeline
and the job queue, supporting environment variable overrides and validation.
"""

import os
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExtractionConfig(BaseSettings):
    """Configuration settings for the extraction system."""

    model_config = SettingsConfigDict(
        env_prefix="EXTRACTION_",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    # LLM settings
    llm_provider: str = Field(default="openai", description="LLM provider (openai, anthropic, ollama, none)")
    llm_timeout: int = Field(default=60, description="Timeout for one parsing call in seconds")
    llm_max_retries: int = Field(default=1, description="Attempts per parsing call; job retries handle the rest")
    llm_max_tokens: int = Field(default=1000, description="Max tokens for the parsing response")
    max_text_length: int = Field(default=20000, description="Maximum recognized text length sent to the model")

    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI model name")

    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    anthropic_model: str = Field(default="claude-3-haiku-20240307", description="Anthropic model name")

    ollama_base_url: str = Field(default="http://localhost:11434", description="Ollama base URL")
    ollama_model: str = Field(default="llama3.1:8b", description="Ollama model name")

    # Text extraction settings
    min_text_length: int = Field(default=50, description="Minimum direct text length before falling back to OCR")
    text_density_threshold: float = Field(default=100.0, description="Chars per page for a usable text layer")
    direct_text_confidence: float = Field(default=0.95, description="Confidence assigned to text-layer extraction")
    default_ocr_confidence: float = Field(default=0.5, description="OCR confidence when the engine reports none")
    direct_text_cost: float = Field(default=0.001, description="Cost estimate for direct text extraction")
    ocr_cost_per_page: float = Field(default=0.015, description="Cost estimate per OCR'd image or page")
    ocr_zoom: float = Field(default=2.0, description="Rasterization zoom factor for scanned PDF pages")
    ocr_timeout: int = Field(default=30, description="Timeout for one OCR call in seconds")
    ocr_language: str = Field(default="eng", description="Tesseract language code")
    tesseract_cmd: Optional[str] = Field(default=None, description="Path to the tesseract binary")

    # Parsing and confidence settings
    parse_weight: float = Field(default=0.6, description="Weight of parsing confidence in the final score")
    text_weight: float = Field(default=0.4, description="Weight of text extraction confidence in the final score")
    direct_text_bonus: float = Field(default=0.05, description="Bonus for text-layer extraction")
    low_ocr_penalty: float = Field(default=0.1, description="Penalty when OCR confidence is low")
    low_ocr_threshold: float = Field(default=0.8, description="OCR confidence below which the penalty applies")
    hallucination_penalty: float = Field(default=0.1, description="Field confidence penalty per untraceable value")
    basic_confidence_ceiling: float = Field(default=0.5, description="Confidence cap for the regex parser")
    template_dir: Optional[str] = Field(default=None, description="Directory of JSON template overrides")

    # Queue settings
    database_url: Optional[str] = Field(default=None, description="SQLAlchemy URL for the job store (None = in-memory)")
    max_retries: int = Field(default=3, description="Default retry budget per job")
    backoff_base_seconds: int = Field(default=60, description="Backoff unit; delay = base * 2^retry_count")
    stale_after_minutes: int = Field(default=15, description="Processing jobs older than this are considered stuck")
    purge_after_days: int = Field(default=7, description="Failed jobs older than this may be purged")
    worker_count: int = Field(default=2, description="Worker threads in the pool")
    poll_interval: float = Field(default=2.0, description="Seconds between claim attempts when idle")
    estimated_seconds_per_job: int = Field(default=8, description="Used for the completion estimate on submission")
    stream_timeout: int = Field(default=300, description="Seconds before a status stream is closed")
    stream_tick: float = Field(default=5.0, description="Seconds between status stream re-reads")

    # Upload settings
    upload_folder: str = Field(default="uploads", description="Upload folder path")
    max_file_size: int = Field(default=20 * 1024 * 1024, description="Max file size in bytes (20MB)")

    def get_llm_config(self) -> dict:
        """Get LLM provider configuration."""
        return {
            "provider": self.llm_provider,
            "timeout": self.llm_timeout,
            "max_retries": self.llm_max_retries,
            "max_tokens": self.llm_max_tokens,
            "openai": {
                "api_key": self.openai_api_key,
                "model": self.openai_model,
            },
            "anthropic": {
                "api_key": self.anthropic_api_key,
                "model": self.anthropic_model,
            },
            "ollama": {
                "base_url": self.ollama_base_url,
                "model": self.ollama_model,
            },
        }

    def validate_llm_config(self) -> bool:
        """Check that the selected provider has what it needs to be called."""
        provider = (self.llm_provider or "none").lower()
        if provider == "openai":
            return bool(self.openai_api_key)
        if provider == "anthropic":
            return bool(self.anthropic_api_key)
        if provider == "ollama":
            return bool(self.ollama_base_url)
        return False

    def get_effective_upload_folder(self) -> str:
        """Get the effective upload folder path."""
        if os.path.isabs(self.upload_folder):
            return self.upload_folder
        return os.path.join(os.getcwd(), self.upload_folder)


# Global configuration instance
config = ExtractionConfig()
