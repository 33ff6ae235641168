from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = "sqlite+aiosqlite:///./ideaforge.db"
    outputs_dir: Path = Path("./outputs")
    public_base_url: str = "/outputs"

    # Generator selection. The mock generator is deterministic and needs no model server.
    use_mock_generator: bool = False
    ollama_url: str = "http://localhost:11434"
    text_model: str = "llama3.1:8b"
    llm_timeout_seconds: float = 120.0
    comfyui_url: str = "http://localhost:8188"
    image_size: int = 1024

    # Pipeline shape
    ideas_per_batch: int = 5
    max_batches: int = 2
    mutations_per_idea: int = 4
    top_ideas_for_mutation: int = 2
    top_mutations_for_expansion: int = 3
    variations_per_mutation: int = 3
    max_visuals_per_session: int = 4
    visuals_per_request: int = 3
    refinement_questions_per_phase: int = 10

    # Resilience
    rate_limit_max_retries: int = 3
    rate_limit_base_delay_seconds: float = 5.0
    response_cache_ttl_minutes: int = 15
    response_cache_absolute_multiplier: int = 3
    offline_queue_ttl_hours: int = 24
    offline_replay_delay_seconds: float = 2.0
    gallery_cache_ttl_minutes: int = 5
    gallery_max_page_size: int = 100
    gallery_cache_max_entries: int = 1000

    def ensure_outputs_dir(self) -> Path:
        self.outputs_dir.mkdir(parents=True, exist_ok=True)
        return self.outputs_dir


settings = Settings()
