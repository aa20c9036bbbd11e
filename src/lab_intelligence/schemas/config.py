import os
from dataclasses import dataclass, field

DEFAULT_FHIR_BASE_URL = "https://mimic-fhir-api.onrender.com"


def _env_base_url() -> str:
    return os.getenv("FHIR_BASE_URL", DEFAULT_FHIR_BASE_URL)


def _env_cache_ttl() -> float:
    return float(os.getenv("FHIR_CACHE_TTL", "300"))


@dataclass
class AnalysisConfig:
    fhir_base_url: str = field(default_factory=_env_base_url)
    batch_size: int = 10  # Patients fetched and scored concurrently
    observation_page_size: int = 1000  # Bundle page size; all pages are read
    request_timeout: float = 30.0
    response_cache_ttl: float = field(default_factory=_env_cache_ttl)  # Seconds
    max_reported_errors: int = 10
    max_lab_count_batch: int = 20
