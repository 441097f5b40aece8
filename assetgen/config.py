"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""

    # Job persistence
    job_store_mode: str = "memory"  # "memory" or "supabase"
    jobs_table: str = "generation_jobs"
    run_lease_seconds: int = 1800

    # Durable asset storage
    storage_bucket: str = "generated-assets"

    # Image provider (Blockade Labs skybox)
    blockade_api_key: Optional[str] = None
    blockade_api_base: str = "https://backend.blockadelabs.com/api/v1"

    # Mesh provider (Meshy text-to-3d)
    meshy_api_key: Optional[str] = None
    meshy_api_base: str = "https://api.meshy.ai/openapi/v2"

    http_timeout_seconds: float = 30.0

    # Polling
    max_poll_attempts: int = 120
    image_base_interval_seconds: float = 5.0
    image_active_interval_max_seconds: float = 10.0
    mesh_base_interval_seconds: float = 3.0
    max_poll_interval_seconds: float = 30.0

    # Estimated per-asset cost (USD)
    image_estimated_cost: float = 0.03
    mesh_estimated_cost: float = 0.05

    # Asset download boundary
    proxy_base_url: str = "http://localhost:8001"
    proxied_asset_domains: List[str] = ["assets.meshy.ai"]

    # Service
    service_port: int = 8001
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
