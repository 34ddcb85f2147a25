from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

BASE_DIR = Path(__file__).resolve().parent
REPO_DIR = BASE_DIR.parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for the inference provider, image tree, and chat limits."""
    provider: str
    ollama_url: str
    ollama_model: str
    groq_api_key: str
    groq_url: str
    groq_model: str
    upstream_timeout: Optional[float]
    host: str
    port: int
    public_dir: Path
    images_dir: Path
    images_url_prefix: str
    prompts_dir: Path
    default_agent: str
    coalesce_window: float
    product_reply_delay: float
    random_image_count: int
    max_sessions: Optional[int]
    cors_origins: Tuple[str, ...]


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR/REPO_DIR for default paths.
    Failure Modes: Invalid PORT/UPSTREAM_TIMEOUT/COALESCE_WINDOW/PRODUCT_REPLY_DELAY values
        raise ValueError.
        A missing GROQ_API_KEY is not an error here; chat calls fail later.
    If Removed: App cannot locate prompts, images, or the inference API.
    Testing Notes: Verify defaults and overrides via monkeypatched environment.
    """
    # Resolve directories first so IMAGES_DIR can default relative to PUBLIC_DIR.
    public_dir = Path(os.getenv("PUBLIC_DIR") or (REPO_DIR / "public")).resolve()
    images_dir = Path(os.getenv("IMAGES_DIR") or (public_dir / "imagenes")).resolve()
    prompts_dir = Path(os.getenv("PROMPTS_DIR") or (BASE_DIR / "prompts")).resolve()

    timeout = float(os.getenv("UPSTREAM_TIMEOUT", "120"))
    max_sessions = int(os.getenv("MAX_SESSIONS", "0"))
    origins = tuple(
        origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
    )

    return Settings(
        provider=os.getenv("INFERENCE_PROVIDER", "ollama").strip().lower(),
        ollama_url=os.getenv("OLLAMA_URL", "http://localhost:11434/api/chat"),
        ollama_model=os.getenv("OLLAMA_MODEL", "vecinito-model"),
        groq_api_key=os.getenv("GROQ_API_KEY", ""),
        groq_url=os.getenv("GROQ_URL", "https://api.groq.com/openai/v1/chat/completions"),
        groq_model=os.getenv("GROQ_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct"),
        upstream_timeout=timeout if timeout > 0 else None,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        public_dir=public_dir,
        images_dir=images_dir,
        images_url_prefix="/" + os.getenv("IMAGES_URL_PREFIX", "/imagenes").strip("/"),
        prompts_dir=prompts_dir,
        default_agent=os.getenv("DEFAULT_AGENT", "el-vecinito"),
        coalesce_window=max(float(os.getenv("COALESCE_WINDOW", "8")), 0.0),
        product_reply_delay=max(float(os.getenv("PRODUCT_REPLY_DELAY", "2")), 0.0),
        random_image_count=int(os.getenv("RANDOM_IMAGE_COUNT", "3")),
        max_sessions=max_sessions if max_sessions > 0 else None,
        cors_origins=origins or ("*",),
    )
