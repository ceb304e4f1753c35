import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from dotenv import load_dotenv

# Load .env next to this file
BASE_DIR = Path(__file__).resolve().parent
PROJECT_DIR = BASE_DIR.parent
load_dotenv(BASE_DIR / ".env")

BACKENDS = ("a1111", "comfyui", "hf")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


@dataclass(frozen=True)
class Settings:
    port: int = 3001
    family_pin: str = "1234"

    backend: str = "a1111"
    a1111_url: str = "http://127.0.0.1:7860"
    comfyui_url: str = "http://127.0.0.1:8188"
    comfyui_checkpoint: str = "v1-5-pruned-emaonly.safetensors"

    hf_api_token: str | None = None
    hf_api_url: str = "https://api-inference.huggingface.co/models"
    hf_hub_url: str = "https://huggingface.co/api/models"
    hf_edit_model: str = "timbrooks/instruct-pix2pix"
    hf_fallback_model: str = "stabilityai/stable-diffusion-xl-base-1.0"

    max_upload_bytes: int = 10 * 1024 * 1024
    temp_dir: Path = PROJECT_DIR / "temp"

    job_timeout: float = 120.0  # seconds
    poll_interval: float = 0.5
    request_timeout: float = 300.0

    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @property
    def backend_url(self) -> str:
        if self.backend == "comfyui":
            return self.comfyui_url
        if self.backend == "hf":
            return f"{self.hf_api_url}/{self.hf_edit_model}"
        return self.a1111_url

    @property
    def masked_pin(self) -> str:
        return f"{self.family_pin[:2]}***"

    @classmethod
    def from_env(cls) -> "Settings":
        backend = os.getenv("IMAGE_BACKEND", cls.backend).strip().lower()
        if backend not in BACKENDS:
            raise ValueError(f"IMAGE_BACKEND must be one of {BACKENDS}, got {backend!r}")

        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            port=_env_int("PORT", cls.port),
            family_pin=os.getenv("FAMILY_PIN", cls.family_pin),
            backend=backend,
            a1111_url=os.getenv("A1111_URL", cls.a1111_url).rstrip("/"),
            comfyui_url=os.getenv("COMFYUI_URL", cls.comfyui_url).rstrip("/"),
            comfyui_checkpoint=os.getenv("COMFYUI_CHECKPOINT", cls.comfyui_checkpoint),
            hf_api_token=os.getenv("HF_API_TOKEN") or None,
            hf_api_url=os.getenv("HF_API_URL", cls.hf_api_url).rstrip("/"),
            hf_hub_url=os.getenv("HF_HUB_URL", cls.hf_hub_url).rstrip("/"),
            hf_edit_model=os.getenv("HF_EDIT_MODEL", cls.hf_edit_model),
            hf_fallback_model=os.getenv("HF_FALLBACK_MODEL", cls.hf_fallback_model),
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", cls.max_upload_bytes),
            temp_dir=Path(os.getenv("TEMP_DIR", str(cls.temp_dir))),
            job_timeout=_env_float("JOB_TIMEOUT", cls.job_timeout),
            poll_interval=_env_float("POLL_INTERVAL", cls.poll_interval),
            request_timeout=_env_float("REQUEST_TIMEOUT", cls.request_timeout),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings for this process, read from the environment once."""
    return Settings.from_env()
