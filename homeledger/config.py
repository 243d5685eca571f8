# homeledger/config.py
from typing import Annotated, List, Optional
from pydantic_settings import BaseSettings, NoDecode
from pydantic import Field, field_validator

class Settings(BaseSettings):
    # DB
    database_url: str = Field("postgresql+asyncpg://localhost:5432/homeledger")
    auto_create_tables: bool = Field(True)

    # Celery / Redis
    redis_url: str = Field("redis://localhost:6379/0")
    celery_queue: str = Field("documents_queue")
    # enqueue extract+resolve right after an upload / reprocess
    auto_process: bool = Field(True)

    # Storage
    storage_backend: str = Field("local")  # "local" or "minio"
    upload_dir: str = Field(".data")
    public_base_url: str = Field("http://localhost:8000")
    signed_url_ttl: int = Field(3600)

    # MinIO
    minio_endpoint: Optional[str] = Field(None)
    minio_access_key: Optional[str] = Field(None)
    minio_secret_key: Optional[str] = Field(None)
    minio_bucket: str = Field("documents")
    minio_secure: bool = Field(False)

    # Uploads
    max_upload_size: int = Field(50 * 1024 * 1024)
    allowed_content_types: Annotated[List[str], NoDecode] = Field([
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/heic",
        "application/pdf",
    ])

    # DeepInfra (OpenAI-compatible endpoint)
    deepinfra_base: str = Field("https://api.deepinfra.com/v1/openai")
    deepinfra_token: Optional[str] = Field(None)
    vision_model: str = Field("meta-llama/Llama-3.2-11B-Vision-Instruct")
    reasoning_model: str = Field("deepseek-ai/DeepSeek-V3.1")
    llm_timeout: float = Field(60.0)
    # total attempts per HTTP call; 1 disables transport retries
    llm_attempts: int = Field(1)
    pdf_max_pages: int = Field(20)

    # CORS
    cors_origins: Annotated[List[str], NoDecode] = Field(["*"])

    secret_key: str = Field("change_me")
    host: str = Field("0.0.0.0")
    port: int = Field(8000)
    log_level: str = Field("INFO")

    # Prometheus
    prometheus_enabled: bool = Field(True)

    # Pydantic v2 config
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # ---- field validators (pydantic v2 style) ----
    @field_validator("allowed_content_types", mode="before")
    def _split_allowed_content_types(cls, v):
        """
        Allows ALLOWED_CONTENT_TYPES as comma-separated string in env, or as a list.
        Example: 'image/jpeg,application/pdf'
        """
        if isinstance(v, str):
            return [s.strip().lower() for s in v.split(",") if s.strip()]
        return v

    @field_validator("cors_origins", mode="before")
    def _split_cors_origins(cls, v):
        """
        Allows CORS_ORIGINS as comma-separated string in env, or as a list.
        """
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("storage_backend", mode="before")
    def _normalize_storage_backend(cls, v):
        if v is None:
            return "local"
        v = str(v).strip().lower()
        if v not in ("local", "minio"):
            raise ValueError("STORAGE_BACKEND must be 'local' or 'minio'")
        return v

    @field_validator("llm_attempts", mode="before")
    def _validate_llm_attempts(cls, v):
        """
        Accepts the env value as string or int and ensures it's a positive int.
        """
        if isinstance(v, str) and v.isdigit():
            v = int(v)
        if not isinstance(v, int) or v <= 0:
            raise ValueError("LLM_ATTEMPTS must be a positive integer")
        return v

settings = Settings()
