"""
Environment-backed settings for the realtime session client.

Values are read from the process environment, after loading a `.env` file
from the working directory when one exists.
"""

import os
from pathlib import Path
from typing import Optional

import dotenv
from pydantic import BaseModel, Field

from realtime_session.config.constants import (
    DEFAULT_REALTIME_MODEL,
    REALTIME_URL,
    SESSION_CREATED_TIMEOUT,
    SESSION_UPDATE_TIMEOUT,
    TOOL_TIMEOUT,
)


class RealtimeSettings(BaseModel):
    """Connection and timeout settings for a RealtimeSession."""

    api_key: Optional[str] = Field(default=None, repr=False)
    model: str = DEFAULT_REALTIME_MODEL
    url: str = REALTIME_URL
    session_created_timeout: float = Field(default=SESSION_CREATED_TIMEOUT, gt=0)
    session_update_timeout: float = Field(default=SESSION_UPDATE_TIMEOUT, gt=0)
    tool_timeout: float = Field(default=TOOL_TIMEOUT, gt=0)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "RealtimeSettings":
        """
        Build settings from environment variables.

        Args:
            env_file: Optional path to a dotenv file (defaults to ./.env)

        Returns:
            RealtimeSettings populated from the environment
        """
        env_path = env_file or Path(".") / ".env"
        if env_path.exists():
            dotenv.load_dotenv(env_path)

        return cls(
            api_key=os.getenv("OPENAI_API_KEY"),
            model=os.getenv("OPENAI_REALTIME_MODEL", DEFAULT_REALTIME_MODEL),
            url=os.getenv("OPENAI_REALTIME_URL", REALTIME_URL),
            session_created_timeout=float(
                os.getenv("REALTIME_SESSION_TIMEOUT", SESSION_CREATED_TIMEOUT)
            ),
            session_update_timeout=float(
                os.getenv("REALTIME_UPDATE_TIMEOUT", SESSION_UPDATE_TIMEOUT)
            ),
            tool_timeout=float(os.getenv("REALTIME_TOOL_TIMEOUT", TOOL_TIMEOUT)),
        )
