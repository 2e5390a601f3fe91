from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHAT_API_", env_file=".env", extra="ignore"
    )

    db_url: str = Field(default="sqlite+aiosqlite:///./xat_api.db")
    ollama_url: str = Field(default="http://localhost:11434/api")
    ollama_model: str = Field(default="qwen2.5vl:7b")
    ollama_model_text: str = Field(default="qwen2.5vl:7b")
    ollama_model_vision: str = Field(default="qwen2.5vl:7b")
    upstream_timeout: float = Field(default=30.0)
    data_path: str | None = Field(default=None)
    log_level: str = Field(default="INFO")

config = Config() # type: ignore
