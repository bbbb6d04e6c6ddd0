from typing import Literal

from pydantic import BaseModel, HttpUrl


class ServerSettings(BaseModel):
    log_level: str = "info"
    log_format: Literal["json", "console"] = "json"

    # Telemetry
    telemetry_enabled: bool = False
    otel_service_name: str = "bidding-room"
    # None exports spans to stdout instead of a collector
    otel_exporter_otlp_endpoint: HttpUrl | None = HttpUrl("http://jaeger:4317")
