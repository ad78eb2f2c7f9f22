from pydantic import BaseModel, ConfigDict, Field, field_validator


class SessionConfig(BaseModel):
    """Pydantic configuration for a tunnel session"""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    kubectl_binary: str = Field(default="kubectl", min_length=1, description="Pod forwarding client")
    gcloud_binary: str = Field(default="gcloud", min_length=1, description="Cloud CLI used for bastion tunnels")
    lsof_binary: str = Field(default="lsof", min_length=1, description="Local port probe")

    graceful_shutdown_timeout: float = Field(
        default=5.0, ge=0.1, le=60.0, description="Seconds to wait after SIGTERM before killing a tunnel"
    )
    check_port_availability: bool = Field(default=True, description="Probe local ports before starting")

    @field_validator('kubectl_binary', 'gcloud_binary', 'lsof_binary')
    @classmethod
    def validate_binary(cls, v: str) -> str:
        """Binaries are single executables, not shell snippets"""
        if any(ch.isspace() for ch in v):
            raise ValueError("Binary must be a single executable name or path")
        return v
