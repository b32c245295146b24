"""Ruff wrapper used as the static-analysis engine."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Iterable, List, Protocol, Sequence

from reviewbot.errors import AnalysisMissing
from reviewbot.logger import get_logger, log_with_context
from reviewbot.models.review import Finding

logger = get_logger()

# Ruff understands these file names when passed through --config.
_CONFIG_NAMES = {"ruff.toml", ".ruff.toml", "pyproject.toml"}


@dataclass(frozen=True, slots=True)
class AnalyzerConfig:
    """A project-supplied Ruff configuration file."""

    path: str
    content: str

    @property
    def file_name(self) -> str:
        name = PurePosixPath(self.path).name
        return name if name in _CONFIG_NAMES else "ruff.toml"


class Analyzer(Protocol):
    async def analyze(self, content: str, filename: str, config: AnalyzerConfig | None = None) -> List[Finding]:
        ...


def _resolve_ruff_binary(explicit: str | None) -> str:
    if explicit:
        return explicit
    try:
        from ruff.__main__ import find_ruff_bin

        return os.fsdecode(find_ruff_bin())
    except FileNotFoundError:
        found = shutil.which("ruff")
        if found is None:
            raise
        return found


def _severity_for(code: str | None, error_prefixes: Sequence[str]) -> str:
    if not code:
        # Syntax errors carry no rule code.
        return "error"
    return "error" if code.startswith(tuple(error_prefixes)) else "warning"


def parse_ruff_output(raw: str | bytes, error_prefixes: Iterable[str] = ("E9", "F")) -> List[Finding]:
    """Convert ``ruff check --output-format json`` output into findings."""

    prefixes = tuple(error_prefixes)
    entries: Any = json.loads(raw or "[]")
    if not isinstance(entries, list):
        raise ValueError("ruff JSON output is not a list")

    findings: List[Finding] = []
    for entry in entries:
        location = entry.get("location") or {}
        row = location.get("row")
        if row is None:
            continue
        code = entry.get("code")
        findings.append(
            Finding(
                severity=_severity_for(code, prefixes),
                rule=code,
                line=int(row),
                column=int(location.get("column") or 0),
                message=(entry.get("message") or "").strip(),
            )
        )
    return findings


class RuffAnalyzer:
    """Lint one file's content through ``ruff check`` reading from stdin."""

    def __init__(
        self,
        *,
        binary: str | None = None,
        timeout: float = 30.0,
        error_rule_prefixes: Sequence[str] = ("E9", "F"),
    ) -> None:
        self._binary = binary
        self._timeout = timeout
        self._error_rule_prefixes = tuple(error_rule_prefixes)

    def _command(self, filename: str, config_path: str | None) -> List[str]:
        command = [
            _resolve_ruff_binary(self._binary),
            "check",
            "--output-format",
            "json",
            "--no-cache",
            "--exit-zero",
            "--stdin-filename",
            filename,
        ]
        if config_path:
            command.extend(["--config", config_path])
        else:
            command.append("--isolated")
        command.append("-")
        return command

    async def analyze(self, content: str, filename: str, config: AnalyzerConfig | None = None) -> List[Finding]:
        ctx_logger = log_with_context(logger, path=filename)
        with tempfile.TemporaryDirectory(prefix="reviewbot-") as workdir:
            config_path = None
            if config is not None:
                config_path = os.path.join(workdir, config.file_name)
                with open(config_path, "w", encoding="utf-8") as handle:
                    handle.write(config.content)

            try:
                command = self._command(filename, config_path)
                process = await asyncio.create_subprocess_exec(
                    *command,
                    cwd=workdir,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise AnalysisMissing(f"Could not start ruff: {exc}", step="analyze", original_error=exc) from exc

            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(content.encode("utf-8")), timeout=self._timeout
                )
            except asyncio.TimeoutError as exc:
                process.kill()
                await process.wait()
                raise AnalysisMissing(
                    f"ruff timed out after {self._timeout:.0f}s on {filename}", step="analyze", original_error=exc
                ) from exc

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise AnalysisMissing(f"ruff exited with {process.returncode} on {filename}: {message}", step="analyze")

        try:
            findings = parse_ruff_output(stdout, self._error_rule_prefixes)
        except ValueError as exc:
            raise AnalysisMissing(f"ruff produced unreadable output for {filename}", step="analyze", original_error=exc) from exc

        ctx_logger.debug(f"ruff reported {len(findings)} finding(s)")
        return findings
