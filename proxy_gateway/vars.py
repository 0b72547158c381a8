import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "proxy-gateway")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8080"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").lower()

HEALTH_PATH = os.environ.get("HEALTH_PATH", "/health")
METRICS_PATH = os.environ.get("METRICS_PATH", "/metrics")

PROXY_TRANSPORT = os.getenv("PROXY_TRANSPORT", "UpstreamTransport")
UPSTREAM_URL = os.getenv("UPSTREAM_URL", "").rstrip("/")
UPSTREAM_URL_SCHEME = os.getenv("UPSTREAM_URL_SCHEME", "https")
PROXY_TIMEOUT = float(os.getenv("PROXY_TIMEOUT", "300"))  # seconds
LOG_FAILED_REQUESTS = os.getenv("LOG_FAILED_REQUESTS", "false").lower() == "true"

# Request headers dropped before forwarding, e.g. "x-api-key,cookie"
STRIP_HEADERS = [
    h.strip().lower() for h in os.getenv("STRIP_HEADERS", "").split(",") if h.strip()
]


def _parse_custom_headers(raw: str) -> dict:
    headers: dict = {}
    if not raw:
        return headers
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "=" in entry:
            name, value = entry.split("=", 1)
            name = name.strip()
            value = value.strip()
            if name:
                headers[name] = value
    return headers


# Headers added to the upstream request when the client did not send them
CUSTOM_HEADERS = _parse_custom_headers(os.getenv("CUSTOM_HEADERS", ""))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
