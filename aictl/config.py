"""Global configuration, loaded from AICTL_* environment variables."""

from pydantic_settings import BaseSettings


class AictlSettings(BaseSettings):
    namespace: str = "default"
    # `kubectl proxy` default; set a real server + token for direct access
    kube_api_server: str = "http://127.0.0.1:8001"
    kube_token: str = ""
    kube_verify_ssl: bool = True
    kubectl: str = "kubectl"
    request_timeout: float = 30.0
    log_level: str = "WARNING"

    # Version lineage
    keep_versions: int = 5
    strict: bool = False  # fail hard instead of degrading (watcher, pruning)

    # Synthesis watching
    synthesis_poll_interval: float = 2.0
    synthesis_timeout: float = 600.0  # local models can be slow

    # Learning / optimization
    min_executions: int = 10
    min_confidence: float = 0.90
    otel_query_endpoint: str = ""
    otel_query_api_key: str = ""
    anthropic_api_key: str = ""
    synthesis_model: str = "claude-sonnet-4-20250514"

    model_config = {"env_prefix": "AICTL_"}


settings = AictlSettings()
