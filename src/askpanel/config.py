"""Configuration management for askpanel."""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


def default_providers() -> dict[str, str]:
    """Known answer providers and their display labels, in display order."""
    return {
        "openai": "OpenAI",
        "mistral": "Mistral",
        "gemini": "Gemini",
    }


@dataclass
class SpeechConfig:
    """Speech recognition configuration."""
    enabled: bool = True
    device: str = "default"
    sample_rate: int = 16000
    channels: int = 1
    chunk_duration_ms: int = 512
    window_ms: int = 1024
    language: str = "en"
    silence_timeout_s: float = 1.5
    whisper_model: str = "small.en"
    whisper_device: str = "cpu"
    whisper_compute_type: str = "int8"


@dataclass
class PlaybackConfig:
    """Speech synthesis configuration."""
    enabled: bool = True
    voice_model: Optional[str] = None  # path to a piper .onnx voice
    device: str = "default"
    rate: float = 1.0
    preferred_provider: str = "openai"


@dataclass
class BackendConfig:
    """Answer backend configuration."""
    url: str = "http://localhost:3001"
    ask_path: str = "/ask"
    timeout_s: float = 60.0
    providers: dict[str, str] = field(default_factory=default_providers)

    @property
    def ask_url(self) -> str:
        return self.url.rstrip("/") + "/" + self.ask_path.lstrip("/")


@dataclass
class WebConfig:
    """Web view configuration."""
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = "./logs/askpanel.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class Config:
    """Main configuration container."""
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls(
            speech=SpeechConfig(**data.get("speech", {})),
            playback=PlaybackConfig(**data.get("playback", {})),
            backend=BackendConfig(**data.get("backend", {})),
            web=WebConfig(**data.get("web", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, sort_keys=False)

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        log_level = getattr(logging, self.logging.level.upper(), logging.INFO)

        handlers = [logging.StreamHandler()]

        if self.logging.file:
            log_path = Path(self.logging.file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path))

        logging.basicConfig(
            level=log_level,
            format=self.logging.format,
            handlers=handlers,
            force=True,
        )


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from file or environment."""
    if path is None:
        path = os.environ.get("ASKPANEL_CONFIG", "config/settings.yaml")
    config = Config.from_yaml(path)

    backend_url = os.environ.get("ASKPANEL_BACKEND_URL")
    if backend_url:
        config.backend.url = backend_url

    return config
