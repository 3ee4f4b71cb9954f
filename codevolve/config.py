"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings

DEFAULT_ALLOWED_PATHS = ["core/", "pipelines/", "sdk.py"]

DEFAULT_FORBIDDEN_PATHS = [
    ".env",
    ".git/",
    ".venv/",
    "node_modules/",
    "codevolve/",  # the pipeline never rewrites itself
    "core/evolution/",
]

# Process control, shell execution and destructive file operations.
DEFAULT_DANGEROUS_PATTERNS = [
    r"process\.exit",
    r"child_process",
    r"\beval\s*\(",
    r"\bFunction\s*\(",
    r"require\s*\(\s*['\"`]child",
    r"\bexec\s*\(",
    r"execSync",
    r"\bspawn\s*\(",
    r"rm\s+-rf",
    r"unlink.*/",
    r"\bsubprocess\b",
    r"os\.system",
    r"os\.popen",
    r"os\._exit",
    r"sys\.exit",
    r"shutil\.rmtree",
    r"os\.remove",
    r"os\.unlink",
    r"__import__\s*\(",
]


class EvolutionSettings(BaseSettings):
    project_root: Path = Path(".")
    data_dir: Path = Path("data/evolution")
    log_level: str = "INFO"

    # Oracle
    anthropic_api_key: str = ""
    default_model: str = "claude-sonnet-4-20250514"

    # Daemon
    interval_seconds: int = 3600
    max_proposals_per_day: int = 10
    strict_writes: bool = False  # roll back the whole run on any per-file write error

    # Judge
    approval_threshold: float = 7.0
    safety_minimum: float = 8.0

    # Inbox
    repo: str = ""  # owner/repo
    github_token: str = ""
    issue_labels: list[str] = ["evolution"]
    max_age_hours: int = 72
    max_per_cycle: int = 5
    http_timeout: float = 30.0

    # Guardrails
    allowed_paths: list[str] = DEFAULT_ALLOWED_PATHS
    forbidden_paths: list[str] = DEFAULT_FORBIDDEN_PATHS
    dangerous_patterns: list[str] = DEFAULT_DANGEROUS_PATTERNS
    max_changes: int = 10
    max_file_size: int = 50 * 1024

    # Validation
    entry_points: list[str] = []
    run_tests: bool = False
    test_command: list[str] = []  # empty -> python -m pytest -q
    check_timeout: float = 15.0
    test_timeout: float = 60.0

    # Version control
    direct_commit: bool = False
    base_branch: str = "main"
    branch_prefix: str = "evolution/"
    git_timeout: float = 30.0

    model_config = {"env_prefix": "CODEVOLVE_"}

    @property
    def proposals_file(self) -> Path:
        return self.project_root / self.data_dir / "proposals.json"

    @property
    def processed_file(self) -> Path:
        return self.project_root / self.data_dir / "processed.json"

    @property
    def audit_file(self) -> Path:
        return self.project_root / self.data_dir / "logs" / "evolution.log"

    @property
    def backup_dir(self) -> Path:
        return self.project_root / self.data_dir / "backups"


settings = EvolutionSettings()
