"""Configuration management for the content enhancer."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Session settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CHATENHANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Feature toggles
    diagrams_enabled: bool = True
    math_enabled: bool = True
    copy_button_enabled: bool = True
    table_styling_enabled: bool = True
    font_size_enabled: bool = True
    font_size_px: int = 20

    # Copy controls
    copy_button_style: str = "arrow"  # arrow, icon, text, custom
    copy_button_custom_text: str = ""
    copy_button_placement: str = "top"  # top, bottom, both

    # Scheduling
    stable_delay_ms: int = 400
    max_wait_ms: int = 2800
    scan_ancestor_limit: int = 20

    # Tree patterns
    content_selector: str = (
        ".prose, .prose-sm, [data-in-html-content], .leading-relaxed.select-text"
    )
    completion_selector: str = '[data-tooltip-id^="up-"]'
    diagram_selector: str = '[class*="language-mermaid"], .code-block'

    # Engines
    mermaid_url: str = "https://cdn.jsdelivr.net/npm/mermaid@10.9.0/dist/mermaid.min.js"
    katex_url: str = "https://cdn.jsdelivr.net/npm/katex@0.16.9/dist/katex.min.js"
    resource_timeout_s: float = 15.0

    # Logging
    log_level: str = "INFO"

    @property
    def delay(self) -> float:
        """Scheduler stability delay in seconds."""
        return self.stable_delay_ms / 1000.0

    @property
    def max_wait(self) -> float:
        """Hard cap on how long a region may stay pending, in seconds."""
        return self.max_wait_ms / 1000.0


settings = Settings()
