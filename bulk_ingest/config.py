from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "bulk-ingest"
    app_version: str = "dev"
    host: str = "0.0.0.0"
    port: int = 8000
    ingest_endpoint_url: str = "http://127.0.0.1:8000/resume/process"
    file_field_name: str = "resumes"
    job_field_name: str = "job_id"
    chunk_size: int = 5
    upload_concurrency: int = 6
    max_retries: int = 3
    retry_base_delay_ms: int = 500
    retry_jitter_ms: int = 150
    max_files_per_batch: int = 500
    max_file_size_bytes: int = 20 * 1024 * 1024
    request_timeout_seconds: float = 60.0
    staging_root: str = ""
    tracing_enabled: bool = False
    tracing_service_name: str = "bulk-ingest"
    otlp_endpoint: str = "localhost:4317"
    otlp_insecure: bool = True


settings = Settings()
