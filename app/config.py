from pydantic_settings import BaseSettings
import json

class Settings(BaseSettings):
    ghl_api_timeout: int = 10
    ghl_api_version: str = "2021-07-28"
    ghl_v2_api_base_url: str = "https://services.leadconnectorhq.com"
    ghl_v1_api_base_url: str = "https://rest.gohighlevel.com"

    # Retries apply to a single endpoint shape (network errors, 429, 5xx)
    ghl_max_retries: int = 2
    ghl_retry_base_delay: float = 1.0
    # Overall budget in seconds for one lookup, all probes included
    ghl_request_budget: float = 45.0

    # Field matching
    field_key_max_length: int = 100
    suggestion_min_score: int = 60
    suggestion_limit: int = 5

    # Service
    cors_allow_origins: str = '["*"]'
    log_level: str = "INFO"
    log_file: str = ""  # Empty = console only

    @property
    def cors_origins_list(self):
        try:
            return json.loads(self.cors_allow_origins)
        except Exception:
            return ["*"]

    class Config:
        env_file = ".env"
        extra = "allow"

settings = Settings()
