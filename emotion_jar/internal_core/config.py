from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _project_root() -> Path:
    # emotion_jar/internal_core/config.py -> emotion_jar -> project
    return Path(__file__).resolve().parents[2]


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_first(names: list[str], default: str) -> str:
    for name in names:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return default


@dataclass(frozen=True)
class JarConfig:
    JAR_DATA_DIR: str
    JAR_NOTES_SLOT: str
    JAR_PERSIST: bool
    JAR_CRUMPLE_DELAY_SEC: float
    JAR_THROW_DELAY_SEC: float
    JAR_TRANSFORM_FLOOR_SEC: float
    JAR_INSTANT_DELAYS: bool
    JAR_LLM_BACKEND: str
    JAR_GEMINI_API_KEY: str
    JAR_GEMINI_MODEL: str
    JAR_GEMINI_API_VERSION: str
    JAR_LLM_TEMPERATURE: float
    JAR_LLM_TIMEOUT_SEC: float
    JAR_LLM_MAX_TOKENS: int
    JAR_LLAMA_CPP_MODEL: str
    JAR_LLAMA_CPP_CHAT_FORMAT: str
    JAR_LLAMA_CPP_N_CTX: int
    JAR_LLAMA_CPP_N_GPU_LAYERS: int
    JAR_MODEL_ROOT: str
    JAR_SESSION_TTL_SECONDS: int
    JAR_LOG_LEVEL: str
    JAR_GATEWAY_DEBUG_LOG: str

    def data_dir_path(self, repo_root: Path) -> Path:
        return (repo_root / self.JAR_DATA_DIR).resolve()

    def notes_path(self, repo_root: Path) -> Path | None:
        if not self.JAR_PERSIST:
            return None
        return self.data_dir_path(repo_root) / f"{self.JAR_NOTES_SLOT}.json"


def load_config() -> JarConfig:
    return JarConfig(
        JAR_DATA_DIR=_getenv_str("JAR_DATA_DIR", "./data"),
        JAR_NOTES_SLOT=_getenv_str("JAR_NOTES_SLOT", "emotional_jar_notes"),
        JAR_PERSIST=_getenv_bool("JAR_PERSIST", True),
        JAR_CRUMPLE_DELAY_SEC=_getenv_float("JAR_CRUMPLE_DELAY_SEC", 1.5),
        JAR_THROW_DELAY_SEC=_getenv_float("JAR_THROW_DELAY_SEC", 1.0),
        JAR_TRANSFORM_FLOOR_SEC=_getenv_float("JAR_TRANSFORM_FLOOR_SEC", 2.6),
        JAR_INSTANT_DELAYS=_getenv_bool("JAR_INSTANT_DELAYS", False),
        JAR_LLM_BACKEND=_getenv_str("JAR_LLM_BACKEND", "gemini").strip().lower(),
        # The original web build read API_KEY; keep it as a secondary source.
        JAR_GEMINI_API_KEY=_getenv_first(["GEMINI_API_KEY", "API_KEY"], ""),
        JAR_GEMINI_MODEL=_getenv_str("JAR_GEMINI_MODEL", "gemini-2.5-flash"),
        JAR_GEMINI_API_VERSION=_getenv_str("JAR_GEMINI_API_VERSION", ""),
        JAR_LLM_TEMPERATURE=_getenv_float("JAR_LLM_TEMPERATURE", 0.8),
        JAR_LLM_TIMEOUT_SEC=_getenv_float("JAR_LLM_TIMEOUT_SEC", 30.0),
        JAR_LLM_MAX_TOKENS=_getenv_int("JAR_LLM_MAX_TOKENS", 512),
        JAR_LLAMA_CPP_MODEL=_getenv_str("JAR_LLAMA_CPP_MODEL", ""),
        JAR_LLAMA_CPP_CHAT_FORMAT=_getenv_str("JAR_LLAMA_CPP_CHAT_FORMAT", "gemma"),
        JAR_LLAMA_CPP_N_CTX=_getenv_int("JAR_LLAMA_CPP_N_CTX", 2048),
        JAR_LLAMA_CPP_N_GPU_LAYERS=_getenv_int("JAR_LLAMA_CPP_N_GPU_LAYERS", -1),
        JAR_MODEL_ROOT=_getenv_str("JAR_MODEL_ROOT", "").strip(),
        JAR_SESSION_TTL_SECONDS=_getenv_int("JAR_SESSION_TTL_SECONDS", 14400),
        JAR_LOG_LEVEL=_getenv_str("JAR_LOG_LEVEL", "INFO"),
        JAR_GATEWAY_DEBUG_LOG=_getenv_str("JAR_GATEWAY_DEBUG_LOG", ""),
    )
