"""
Data models for the resolved run configuration.

Defines the immutable records the planner produces and every other component
consumes: the run configuration itself, target environments, the web server
declaration and the authentication settings.
"""

from pathlib import Path
from typing import Dict, Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_TEST_MATCH = (
    "**/*.spec.js",
    "**/*.spec.ts",
    "**/*.test.js",
    "**/*.test.ts",
)


class EnvironmentDescriptor(BaseModel):
    """A target environment (browser engine, device profile) a test runs against."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1, description="Environment name")
    capabilities: Dict[str, Any] = Field(
        default_factory=dict, description="Opaque engine configuration"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Environment name cannot be blank")
        return v.strip()


class Credentials(BaseModel):
    """Login credentials for the shared test account."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    email: str = Field("playwright_test@example.com", description="Login email")
    password: str = Field("TestPassword123!", repr=False, description="Login password")


class AuthSpec(BaseModel):
    """How the shared session state is obtained and where it is kept."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = Field(True, description="Provision session state before the run")
    storage_state_path: Path = Field(
        Path("tests/e2e/.auth/user.json"), description="Session artifact location"
    )
    login_path: str = Field("/login", description="Login page path")
    email_field: str = Field("email", description="Form field for the email")
    password_field: str = Field("password", description="Form field for the password")
    credentials: Credentials = Field(default_factory=Credentials)
    timeout_ms: int = Field(10000, gt=0, description="Login deadline in milliseconds")


class WebServerSpec(BaseModel):
    """Declaration of the system under test process."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    command: str = Field(..., min_length=1, description="Shell command starting the server")
    url: str = Field(..., min_length=1, description="Readiness URL")
    timeout_ms: int = Field(120000, gt=0, description="Startup deadline in milliseconds")
    reuse_existing_server: bool = Field(
        True, description="Reuse a server already answering on url"
    )


class RunConfig(BaseModel):
    """Immutable, fully resolved configuration of one test run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    test_directory: Path = Field(..., description="Directory containing test files")
    parallel: bool = Field(False, description="Run test units in parallel workers")
    worker_count: int = Field(1, ge=1, description="Size of the worker pool")
    retry_count: int = Field(0, ge=0, description="Extra attempts after a failure")
    timeout_ms: int = Field(30000, gt=0, description="Per-attempt timeout")
    target_environments: Tuple[EnvironmentDescriptor, ...] = Field(
        ..., min_length=1, description="Environments every unit runs against"
    )
    base_url: str = Field(..., min_length=1, description="Base URL of the system under test")

    ci: bool = Field(False, description="Resolved under a CI signal")
    forbid_only: bool = Field(False, description="Reject focused (only) tests")
    global_timeout_ms: Optional[int] = Field(
        None, gt=0, description="Deadline for the whole execution phase"
    )
    web_server: Optional[WebServerSpec] = Field(None, description="Managed server")
    auth: AuthSpec = Field(default_factory=AuthSpec)
    artifacts_dir: Path = Field(Path("test-results"), description="Artifact root")
    report_dir: Path = Field(Path("playwright-report"), description="Report root")
    test_match: Tuple[str, ...] = Field(DEFAULT_TEST_MATCH, min_length=1)

    @field_validator("target_environments")
    @classmethod
    def validate_unique_environments(cls, v):
        names = [env.name for env in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate environment names: {duplicates}")
        return v

    @model_validator(mode="after")
    def validate_serial_workers(self):
        if not self.parallel and self.worker_count != 1:
            raise ValueError("worker_count must be 1 when parallel is false")
        return self

    @property
    def environment_names(self) -> Tuple[str, ...]:
        return tuple(env.name for env in self.target_environments)

    def to_summary(self) -> Dict[str, Any]:
        """Create a summary dictionary for logging."""
        return {
            "test_directory": str(self.test_directory),
            "parallel": self.parallel,
            "worker_count": self.worker_count,
            "retry_count": self.retry_count,
            "timeout_ms": self.timeout_ms,
            "environments": list(self.environment_names),
            "base_url": self.base_url,
            "ci": self.ci,
            "forbid_only": self.forbid_only,
            "web_server": self.web_server.url if self.web_server else None,
        }
