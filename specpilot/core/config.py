# specpilot/core/config.py
"""
Application configuration - single source of truth for all settings.
"""
import os
import sys
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


@dataclass
class LLMSettings:
    """LLM provider configuration."""
    default_provider: str = field(default_factory=lambda: os.getenv("DEFAULT_LLM_PROVIDER", "anthropic"))
    default_model: Optional[str] = field(default_factory=lambda: os.getenv("DEFAULT_LLM_MODEL"))
    openai_api_key: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    anthropic_api_key: Optional[str] = field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY"))
    ollama_base_url: str = field(default_factory=lambda: os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"))
    # Hard ceiling for a single gateway call (seconds)
    timeout: float = field(default_factory=lambda: float(os.getenv("SPECPILOT_LLM_TIMEOUT", "180")))
    # Model context window, used to size TestWriter chunks
    context_tokens: int = field(default_factory=lambda: int(os.getenv("SPECPILOT_CONTEXT_TOKENS", "32000")))

    planner_temperature: float = 0.2
    planner_max_tokens: int = 6000
    writer_temperature: float = 0.15
    writer_max_tokens: int = 8000
    healer_temperature: float = 0.1
    healer_max_tokens: int = 16000


@dataclass
class RunSettings:
    """Run / self-heal loop configuration."""
    default_max_iterations: int = field(default_factory=lambda: int(os.getenv("SPECPILOT_MAX_ITERATIONS", "3")))
    default_base_directory: Path = field(default_factory=lambda: Path(
        os.getenv("SPECPILOT_BASE_DIRECTORY", "generated-tests")
    ))
    default_base_package: str = field(default_factory=lambda: os.getenv("SPECPILOT_BASE_PACKAGE", "api_tests"))
    spec_lookup_timeout: float = 30.0


@dataclass
class ExecutorSettings:
    """Child-process configuration for the generated suite."""
    python_executable: str = field(default_factory=lambda: os.getenv("SPECPILOT_PYTHON", sys.executable))
    test_timeout: float = field(default_factory=lambda: float(os.getenv("SPECPILOT_TEST_TIMEOUT", "120")))
    compile_timeout: float = 30.0
    report_enabled: bool = field(default_factory=lambda: os.getenv("SPECPILOT_REPORT", "true").lower() == "true")
    # Base URL the generated suite targets; overrides the plan's baseUrl when set
    api_base_url: Optional[str] = field(default_factory=lambda: os.getenv("API_BASE_URL"))


@dataclass
class FileStoreSettings:
    """Generated-project file handling."""
    write_timeout: float = field(default_factory=lambda: float(os.getenv("SPECPILOT_WRITE_TIMEOUT", "30")))
    ignored_dirs: List[str] = field(default_factory=lambda: [
        "__pycache__", ".pytest_cache", ".reports", ".venv", "venv",
        "node_modules", "build", "dist", ".git", "target", ".mypy_cache",
    ])
    binary_extensions: List[str] = field(default_factory=lambda: [
        ".pyc", ".pyo", ".so", ".dll", ".exe", ".class", ".jar", ".whl",
        ".zip", ".gz", ".tar", ".png", ".jpg", ".jpeg", ".gif", ".ico", ".pdf",
    ])


@dataclass
class ServerSettings:
    """HTTP surface configuration."""
    port: int = field(default_factory=lambda: int(os.getenv("PORT", 8000)))
    rate_limit: str = field(default_factory=lambda: os.getenv("RATE_LIMIT", "100/minute"))
    cors_origins: str = field(default_factory=lambda: os.getenv("CORS_ORIGINS", "*"))
    # Directory of normalized spec JSON files loaded at startup
    specs_dir: Optional[Path] = field(default_factory=lambda: (
        Path(os.environ["SPECPILOT_SPECS_DIR"]) if os.getenv("SPECPILOT_SPECS_DIR") else None
    ))


@dataclass
class Settings:
    """Main application settings."""
    llm: LLMSettings = field(default_factory=LLMSettings)
    run: RunSettings = field(default_factory=RunSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    files: FileStoreSettings = field(default_factory=FileStoreSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    def ensure_directories(self):
        """Ensure required directories exist."""
        self.run.default_base_directory.mkdir(parents=True, exist_ok=True)


# Singleton instance
settings = Settings()
