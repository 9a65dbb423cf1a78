from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./appointment_import.db"
    debug: bool = True
    log_level: str = "INFO"
    date_default_dayfirst: bool = True  # Salons export European dates (DD/MM/YYYY)

    # Upload / ingestion
    import_max_file_size_mb: int = 10
    import_preview_rows: int = 10
    import_error_sample_limit: int = 10  # Row errors surfaced by the validate endpoint
    import_job_ttl_seconds: int = 3600  # Parsed uploads are kept in memory this long

    # Service matching
    service_match_threshold: float = 0.90

    # Batch execution
    import_batch_runner_workers: int = 4  # Concurrent batches per process
    import_batch_max_workers: int = 1  # Row workers inside a single batch
    import_error_retention_limit: int = 10000  # Row failures buffered in memory before spilling to the database
    import_batch_memory_ttl_seconds: int = 3600  # Finished batches are served from the database after this
    default_appointment_duration_minutes: int = 30

    model_config = ConfigDict(env_file=".env", extra="ignore")


settings = Settings()
