import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

# Storage mode: local / gcp / azure
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")

LOCAL_OUTPUT_DIR = Path(os.getenv("LOCAL_OUTPUT_DIR", str(BASE_DIR / "data" / "artifacts")))
LOCAL_PUBLIC_BASE_URL = os.getenv("LOCAL_PUBLIC_BASE_URL", "http://localhost:8000/artifacts")
LOCAL_SIGNING_SECRET = os.getenv("LOCAL_SIGNING_SECRET", "dev-secret")

GCS_BUCKET = os.getenv("GCS_BUCKET")
AZURE_CONN_STR = os.getenv("AZURE_STORAGE_CONNECTION_STRING")
AZURE_CONTAINER = os.getenv("AZURE_CONTAINER")

# Third-party processing service
HOMEDESIGNS_API_URL = os.getenv("HOMEDESIGNS_API_URL", "https://homedesigns.ai/api/v2")
HOMEDESIGNS_AI_TOKEN = os.getenv("HOMEDESIGNS_AI_TOKEN", "")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "60"))

# 60 attempts x 5s = 5 minute horizon
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "5"))
POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "60"))

MIN_IMAGE_DIMENSION = int(os.getenv("MIN_IMAGE_DIMENSION", "512"))
ARTIFACT_URL_TTL_HOURS = float(os.getenv("ARTIFACT_URL_TTL_HOURS", "24"))
FETCH_MAX_WORKERS = int(os.getenv("FETCH_MAX_WORKERS", "1"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
