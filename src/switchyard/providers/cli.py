"""Provider backed by a locally installed model CLI (claude, copilot, codex, kimi)."""

from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from switchyard.errors import ProcessExitError, ProviderTimeoutError, TransportError
from switchyard.logging import get_logger, preview
from switchyard.providers.base import (
    ChatOptions,
    ChatResponse,
    CliFlavor,
    Message,
    ProviderType,
    thinking_enabled,
)
from switchyard.providers.cli_output import normalize_output, parse_turn_output

DEFAULT_TIMEOUT_MS = 120_000
HEALTH_TIMEOUT_SECONDS = 5.0
ERROR_DETAIL_LIMIT = 500
_DRAIN_GRACE_SECONDS = 1.0

PROMPT_PLACEHOLDER = "{prompt}"
OUTPUT_PLACEHOLDER = "{output}"
STDIN_MARKER = "-"

_FLAVOR_PROMPT_FLAGS: dict[CliFlavor, tuple[str, ...]] = {
    CliFlavor.CLAUDE: ("-p",),
    CliFlavor.COPILOT: ("-p",),
    CliFlavor.CODEX: ("-q",),
    CliFlavor.KIMI: ("--print", "-p"),
}

_ROLE_PREFIXES = {
    "system": "System",
    "user": "User",
    "assistant": "Assistant",
    "tool": "Tool result",
}


@dataclass(slots=True)
class CliRunResult:
    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool


def build_prompt(messages: list[Message], options: ChatOptions | None = None) -> str:
    parts: list[str] = []
    if options is not None and thinking_enabled(options):
        parts.append(f"Thinking level: {options.thinking_level}")
    for message in messages:
        prefix = _ROLE_PREFIXES.get(message.role)
        if prefix is None:
            continue
        parts.append(f"{prefix}: {message.content}")
    return "\n\n".join(parts)


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            return
        sink.extend(chunk)


class CliProvider:
    type = ProviderType.CLI

    def __init__(
        self,
        id: str,
        *,
        flavor: CliFlavor | str,
        model: str,
        command: str | None = None,
        args: list[str] | None = None,
        timeout_ms: int | None = None,
        logger: Any = None,
    ) -> None:
        self.flavor = CliFlavor(flavor)
        self.id = id
        self.name = f"CLI ({self.flavor.value})"
        self.model = model
        self.command = command or self.flavor.value
        self.args = list(args or [])
        self.timeout_ms = timeout_ms or DEFAULT_TIMEOUT_MS
        self._logger = logger or get_logger(__name__)

    def build_arguments(
        self, prompt: str, output_path: str | None = None
    ) -> tuple[list[str], str | None]:
        """Return the argv tail and the text to feed on stdin (if any)."""
        args: list[str] = []
        substituted = False
        for arg in self.args:
            if PROMPT_PLACEHOLDER in arg:
                arg = arg.replace(PROMPT_PLACEHOLDER, prompt)
                substituted = True
            if output_path is not None and OUTPUT_PLACEHOLDER in arg:
                arg = arg.replace(OUTPUT_PLACEHOLDER, output_path)
            args.append(arg)
        if substituted:
            return args, None
        if STDIN_MARKER in self.args:
            return args, prompt
        return [*args, *_FLAVOR_PROMPT_FLAGS[self.flavor], prompt], None

    def _wants_output_file(self) -> bool:
        return any(OUTPUT_PLACEHOLDER in arg for arg in self.args)

    def _new_output_path(self) -> str:
        fd, path = tempfile.mkstemp(prefix=f"switchyard-cli-{self.flavor.value}-output-", suffix=".txt")
        os.close(fd)
        return path

    async def _run(self, args: list[str], stdin_text: str | None, timeout_s: float) -> CliRunResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.command,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin_text is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=os.environ.copy(),
            )
        except FileNotFoundError as exc:
            raise TransportError(
                f"CLI command not found: {self.command}",
                code="ENOENT",
                provider_id=self.id,
                model=self.model,
            ) from exc
        except OSError as exc:
            raise TransportError(
                f"CLI command failed to start: {self.command}: {exc}",
                code="ESPAWN",
                provider_id=self.id,
                model=self.model,
            ) from exc

        stdout = bytearray()
        stderr = bytearray()
        drains = [
            asyncio.create_task(_drain(proc.stdout, stdout)),
            asyncio.create_task(_drain(proc.stderr, stderr)),
        ]
        timed_out = False
        try:
            if stdin_text is not None and proc.stdin is not None:
                proc.stdin.write(stdin_text.encode("utf-8"))
                try:
                    await proc.stdin.drain()
                except (BrokenPipeError, ConnectionResetError):
                    self._logger.debug("provider.cli.stdin_closed", provider_id=self.id)
                proc.stdin.close()
            try:
                await asyncio.wait_for(proc.wait(), timeout=timeout_s)
            except TimeoutError:
                timed_out = True
                _kill(proc)
                await proc.wait()
            await asyncio.wait(drains, timeout=_DRAIN_GRACE_SECONDS)
        finally:
            _kill(proc)
            for task in drains:
                if not task.done():
                    task.cancel()

        return CliRunResult(
            exit_code=proc.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            timed_out=timed_out,
        )

    def _normalize(self, raw: str) -> str:
        if self.flavor == CliFlavor.KIMI:
            return parse_turn_output(raw)
        return normalize_output(raw)

    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        opts = options or ChatOptions()
        prompt = build_prompt(messages, opts)
        timeout_ms = opts.timeout_ms or self.timeout_ms
        output_path = self._new_output_path() if self._wants_output_file() else None
        args, stdin_text = self.build_arguments(prompt, output_path)

        log = self._logger.bind(
            provider_id=self.id,
            provider_type=self.type.value,
            model=self.model,
            flavor=self.flavor.value,
        )
        log.info("provider.chat.start", command=self.command, prompt_chars=len(prompt))
        started = time.monotonic()
        file_output = ""
        try:
            result = await self._run(args, stdin_text, timeout_ms / 1000)
            if output_path is not None:
                with contextlib.suppress(FileNotFoundError):
                    file_output = Path(output_path).read_text(encoding="utf-8", errors="replace")
        finally:
            if output_path is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(output_path)

        duration_ms = int((time.monotonic() - started) * 1000)
        if result.timed_out:
            log.warning(
                "provider.chat.failed",
                duration_ms=duration_ms,
                success=False,
                timed_out=True,
                partial_preview=preview(result.stdout),
            )
            raise ProviderTimeoutError(
                f"CLI {self.flavor.value} command timed out after {timeout_ms} ms",
                provider_id=self.id,
                model=self.model,
                partial_output=result.stdout,
            )
        if result.exit_code != 0:
            detail = (result.stderr.strip() or result.stdout.strip() or "Command failed")[
                :ERROR_DETAIL_LIMIT
            ]
            log.warning(
                "provider.chat.failed",
                duration_ms=duration_ms,
                success=False,
                exit_code=result.exit_code,
                error=detail[:200],
            )
            raise ProcessExitError(
                f"CLI {self.flavor.value} exited with code {result.exit_code}: {detail}",
                exit_code=result.exit_code,
                detail=detail,
                provider_id=self.id,
                model=self.model,
            )

        raw = file_output.strip() or result.stdout.strip() or result.stderr.strip()
        content = self._normalize(raw)
        log.info(
            "provider.chat.complete",
            duration_ms=duration_ms,
            success=True,
            content_preview=preview(content),
        )
        return ChatResponse(content=content, finish_reason="stop")

    async def health(self) -> bool:
        proc: asyncio.subprocess.Process | None = None
        try:
            proc = await asyncio.create_subprocess_exec(
                self.command,
                "--version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                env=os.environ.copy(),
            )
            code = await asyncio.wait_for(proc.wait(), timeout=HEALTH_TIMEOUT_SECONDS)
            return code == 0
        except Exception:
            return False
        finally:
            # Also runs when the manager abandons the probe via cancellation.
            if proc is not None:
                _kill(proc)

    def estimate_cost(self, messages: list[Message]) -> float:
        return 0.0
