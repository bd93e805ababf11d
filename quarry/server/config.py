# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Server configuration for the Quarry API server."""

import os
from typing import Any

from pydantic import BaseModel, Field, model_validator


class ServerConfig(BaseModel):
    """Configuration for the Quarry API server.

    Can be configured via YAML file or environment variables.
    Environment variables take precedence over YAML values.

    Example YAML:
        server:
          host: 127.0.0.1
          port: 8000
          cors_origins:
            - http://localhost:5173
          scan_workers: 4
          stream_queue_size: 1000
    """

    host: str = Field(
        default="127.0.0.1",
        description="Host address to bind the server to",
    )
    port: int = Field(
        default=8000,
        description="Port to listen on",
    )
    cors_origins: list[str] = Field(
        default=["http://localhost:5173", "http://localhost:3000"],
        description="Allowed CORS origins for the API",
    )
    scan_workers: int = Field(
        default=4,
        description="Worker threads available to progressive scans",
    )
    stream_queue_size: int = Field(
        default=1000,
        description="Maximum queued events per progressive scan before the scan waits",
    )

    @model_validator(mode="after")
    def apply_env_overrides(self) -> "ServerConfig":
        """Apply environment variable overrides after model creation."""
        host_env = os.environ.get("QUARRY_HOST")
        if host_env:
            self.host = host_env

        port_env = os.environ.get("QUARRY_PORT")
        if port_env:
            self.port = int(port_env)

        return self

    @classmethod
    def from_yaml_data(cls, data: dict[str, Any] | None) -> "ServerConfig":
        """Create ServerConfig from parsed YAML data.

        Args:
            data: The 'server' section from the YAML config, or None

        Returns:
            ServerConfig with YAML values and env var overrides applied
        """
        if data is None:
            return cls()
        return cls.model_validate(data)
