"""
Gateway to the external ``kenya-fhir-bridge`` transform engine.

Demonstrates:
- Calling an opaque subprocess through a narrow contract
  (``--input <path> [--format xml]`` in, Bundle JSON on stdout, nonzero exit
  on failure)
- Scoped staging of PHI on disk with guaranteed cleanup on every exit path
- A bounded wall-clock timeout that kills and reaps the engine
- Sanitized failure messages (first line of stderr only, never the payload)

Each call is at-most-once: a failed attempt is a single failed result and the
caller decides whether to resubmit.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
import tempfile
import time
import uuid
from contextlib import contextmanager, suppress
from enum import Enum
from typing import Any, Iterator, Sequence

from fhir_bridge.config import settings
from fhir_bridge.schemas.fhir import FHIR_BUNDLE_SCHEMA
from fhir_bridge.services.validation import validate_against_schema

logger = logging.getLogger(__name__)


class InputFormat(str, Enum):
    JSON = "json"
    XML = "xml"


class TransformError(Exception):
    """A transform failed. The message is a single line, safe to show to clients."""

    def __init__(self, message: str):
        first_line = next((line.strip() for line in message.splitlines() if line.strip()), "")
        super().__init__(first_line or "Transform failed")


@contextmanager
def staged_input(content: bytes, fmt: InputFormat, tmp_dir: str | None = None) -> Iterator[str]:
    """
    Write ``content`` to a fresh, uniquely named file and delete it on exit.
    Names are never reused, so concurrent calls cannot collide.
    """
    suffix = ".xml" if fmt == InputFormat.XML else ".json"
    path = os.path.join(tmp_dir or tempfile.gettempdir(), f"kenyan-{uuid.uuid4()}{suffix}")
    try:
        with open(path, "wb") as fh:
            fh.write(content)
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


class TransformGateway:
    """Runs one engine invocation per call."""

    def __init__(
        self,
        command: Sequence[str],
        timeout: float = 10.0,
        tmp_dir: str | None = None,
    ):
        if not command:
            raise ValueError("Transform engine command must not be empty")
        self.command = list(command)
        self.timeout = timeout
        self.tmp_dir = tmp_dir

    @classmethod
    def from_settings(cls) -> TransformGateway:
        return cls(
            shlex.split(settings.BRIDGE_BIN),
            timeout=settings.TRANSFORM_TIMEOUT_SECONDS,
        )

    def _args(self, path: str, fmt: InputFormat) -> list[str]:
        args = [*self.command, "--input", path]
        if fmt == InputFormat.XML:
            args += ["--format", "xml"]
        return args

    async def run(self, content: bytes, fmt: InputFormat = InputFormat.JSON) -> str:
        """Invoke the engine on ``content`` and return its stdout."""
        with staged_input(content, fmt, self.tmp_dir) as path:
            start = time.perf_counter()
            try:
                proc = await asyncio.create_subprocess_exec(
                    *self._args(path, fmt),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                logger.error("Transform engine could not be started: %s", type(exc).__name__)
                raise TransformError("Transform engine unavailable") from exc

            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                # The engine may exit on its own right at the deadline
                with suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
                logger.warning("Transform timed out after %.1fs", self.timeout)
                raise TransformError(f"Transform timed out after {self.timeout:g}s") from None
            finally:
                duration_ms = (time.perf_counter() - start) * 1000

            if proc.returncode != 0:
                logger.warning(
                    "Transform engine exited with status %s after %.0f ms",
                    proc.returncode,
                    duration_ms,
                )
                raise TransformError(stderr.decode("utf-8", errors="replace"))

            logger.info("Transform completed in %.0f ms", duration_ms)
            return stdout.decode("utf-8", errors="replace")

    async def transform_bundle(
        self, content: bytes, fmt: InputFormat = InputFormat.JSON
    ) -> dict[str, Any]:
        """Run the engine and parse its output as a FHIR Bundle."""
        output = await self.run(content, fmt)
        try:
            bundle = json.loads(output)
        except json.JSONDecodeError:
            raise TransformError("Transform engine returned invalid JSON") from None

        errors = validate_against_schema(bundle, FHIR_BUNDLE_SCHEMA)
        if errors:
            logger.warning("Transform output failed Bundle schema check (%d errors)", len(errors))
            raise TransformError("Transform engine returned a malformed Bundle")
        return bundle
