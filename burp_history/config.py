"""
Load options, from code or from the environment / a .env file.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .container import DEFAULT_CHUNK_SIZE
from .models import Diagnostic, Severity

ENV_PREFIX = "BURP_HISTORY_"


class LoadOptions(BaseModel):
    """How much to keep, how strict to be, and how to run the load pipeline"""

    min_severity: Severity = Field(
        default=Severity.WARNING,
        description="Diagnostics below this severity are dropped",
    )
    fail_fast: bool = Field(
        default=False,
        description="Escalate the first retained entry diagnostic to a fatal ContainerError",
    )
    workers: int = Field(
        default=1, ge=1, le=64,
        description="Parser threads; 1 runs the whole load on the calling thread",
    )
    queue_depth: int = Field(
        default=64, ge=1,
        description="Bound of the hand-off queue between reader and parsers",
    )
    chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE, ge=1,
        description="Bytes read from the stream per feed",
    )

    def keeps(self, diagnostic: Diagnostic) -> bool:
        return diagnostic.severity.rank >= self.min_severity.rank

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, **overrides) -> "LoadOptions":
        """
        Build options from BURP_HISTORY_* environment variables.

        A .env file is loaded first (without overriding variables already
        set). Keyword overrides win over the environment.

        Raises:
            ValueError: If a variable holds an invalid value
        """
        load_dotenv(dotenv_path)

        values = {}
        for field in ("min_severity", "fail_fast", "workers", "queue_depth", "chunk_size"):
            raw = os.getenv(f"{ENV_PREFIX}{field.upper()}")
            if raw is not None and raw.strip():
                values[field] = raw.strip().lower() if field == "min_severity" else raw.strip()
        values.update(overrides)
        return cls(**values)
