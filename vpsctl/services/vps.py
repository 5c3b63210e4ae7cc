"""Host control wrappers: PM2 process supervisor and fail2ban.

Commands are executed directly (no shell) with a timeout. Process names used
in control commands always come from PM2's own process list, never straight
from the request.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from vpsctl.schemas.vps import (
    Fail2BanStatusResponse,
    JailDetailsResponse,
    ProcessAction,
    ProcessBasic,
    ProcessFull,
    ProcessWithCwd,
)

logger = logging.getLogger(__name__)

# Truncate command output quoted in errors and logs
MAX_OUTPUT_IN_ERROR = 200

DEFAULT_NAMESPACE = "default"

FAIL2BAN_CLIENT = "fail2ban-client"
RE_JAIL_LIST = re.compile(r"Jail list:\s*(.*)")
RE_CURRENTLY_FAILED = re.compile(r"Currently failed:\s*(\d+)")
RE_TOTAL_FAILED = re.compile(r"Total failed:\s*(\d+)")
RE_CURRENTLY_BANNED = re.compile(r"Currently banned:\s*(\d+)")
RE_TOTAL_BANNED = re.compile(r"Total banned:\s*(\d+)")
RE_BANNED_IP_LIST = re.compile(r"Banned IP list:\s*([\s\S]*)")

# fail2ban-client error output fragments
OUT_DOES_NOT_EXIST = "Does not exist"
OUT_NOT_FOUND = "not found"
OUT_JAIL_NOT_FOUND = "Jail not found"
OUT_IS_NOT_BANNED = "is not banned"


class CommandError(Exception):
    """A host command failed, timed out, or produced unusable output."""

    pass


class CommandTimeoutError(CommandError):
    pass


class ProcessNotFoundError(Exception):
    """No PM2 process matches the requested name or PID."""

    pass


class ProcessAlreadyRunningError(Exception):
    pass


class ProcessAlreadyStoppedError(Exception):
    pass


class JailNotFoundError(Exception):
    pass


class IPNotBannedError(Exception):
    pass


def _truncate(text: str, max_len: int = MAX_OUTPUT_IN_ERROR) -> str:
    return text if len(text) <= max_len else text[:max_len] + "..."


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, the way the tools print to a terminal."""
        return f"{self.stdout}{self.stderr}"


class CommandRunner:
    """Runs an executable with arguments and a timeout."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    async def run(self, *args: str) -> CommandResult:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Could not start {args[0]}: {e}")
            raise CommandError(f"command {args[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            logger.error(f"Command timed out after {self.timeout}s: {' '.join(args)}")
            raise CommandTimeoutError(f"command {args[0]}: timeout after {self.timeout}s") from e

        return CommandResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )


class ProcessSupervisor:
    """Lists and controls PM2-managed processes via ``pm2 jlist``."""

    def __init__(self, runner: CommandRunner, pm2_binary: str = "pm2"):
        self.runner = runner
        self.pm2_binary = pm2_binary

    async def _jlist(self) -> list[dict[str, Any]]:
        result = await self.runner.run(self.pm2_binary, "jlist")
        if not result.ok:
            raise CommandError(f"pm2 jlist failed: {_truncate(result.stderr.strip())}")
        try:
            entries = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise CommandError(f"pm2 jlist returned invalid JSON: {_truncate(result.stdout)}") from e
        if not isinstance(entries, list):
            raise CommandError("pm2 jlist did not return a list")
        return [entry for entry in entries if isinstance(entry, dict)]

    @staticmethod
    def _parse(entry: dict[str, Any]) -> tuple[str, ProcessFull]:
        env = entry.get("pm2_env") or {}
        monit = entry.get("monit") or {}
        active = env.get("status") == "online"

        started_at = ""
        uptime_ms = env.get("pm_uptime")
        if active and isinstance(uptime_ms, int | float):
            started_at = datetime.fromtimestamp(uptime_ms / 1000, tz=UTC).isoformat()

        process = ProcessFull(
            name=str(entry.get("name", "")),
            pid=int(entry.get("pid") or 0),
            active=active,
            cwd=str(env.get("pm_cwd") or ""),
            mem=round(float(monit.get("memory") or 0) / (1024 * 1024), 1),
            cpu=float(monit.get("cpu") or 0),
            started_at=started_at,
        )
        return str(env.get("namespace") or DEFAULT_NAMESPACE), process

    async def list_full(self) -> dict[str, list[ProcessFull]]:
        grouped: dict[str, list[ProcessFull]] = {}
        for entry in await self._jlist():
            namespace, process = self._parse(entry)
            grouped.setdefault(namespace, []).append(process)
        return grouped

    async def list_basic(self) -> dict[str, list[ProcessBasic]]:
        full = await self.list_full()
        return {
            ns: [ProcessBasic(name=p.name, pid=p.pid, active=p.active) for p in procs]
            for ns, procs in full.items()
        }

    async def list_with_cwd(self) -> dict[str, list[ProcessWithCwd]]:
        full = await self.list_full()
        return {
            ns: [ProcessWithCwd(name=p.name, pid=p.pid, active=p.active, cwd=p.cwd) for p in procs]
            for ns, procs in full.items()
        }

    async def find(self, target: str) -> ProcessFull:
        """Resolve a process by exact name, or by PID when target is numeric."""
        pid = int(target) if target.isdigit() else None
        for procs in (await self.list_full()).values():
            for process in procs:
                if process.name == target or (pid is not None and process.pid == pid):
                    return process
        raise ProcessNotFoundError(f"Process not found: {target}")

    async def control(self, action: ProcessAction, target: str) -> str:
        """Run start/stop/restart on a process and return its resolved name."""
        process = await self.find(target)

        if action is ProcessAction.START and process.active:
            raise ProcessAlreadyRunningError(process.name)
        if action is ProcessAction.STOP and not process.active:
            raise ProcessAlreadyStoppedError(process.name)

        result = await self.runner.run(self.pm2_binary, action.value, process.name)
        if not result.ok:
            raise CommandError(
                f"pm2 {action.value} {process.name} failed: {_truncate(result.output.strip())}"
            )

        logger.info(f"PM2 {action.value} executed for {process.name}")
        return process.name


def _parse_int(pattern: re.Pattern[str], text: str) -> int:
    match = pattern.search(text)
    return int(match.group(1)) if match else 0


class BanManager:
    """Reads jail status from and lifts bans through ``fail2ban-client``."""

    def __init__(self, runner: CommandRunner, use_sudo: bool = True):
        self.runner = runner
        self._prefix = ("sudo", FAIL2BAN_CLIENT) if use_sudo else (FAIL2BAN_CLIENT,)

    async def _run(self, *args: str) -> CommandResult:
        return await self.runner.run(*self._prefix, *args)

    async def status(self) -> Fail2BanStatusResponse:
        result = await self._run("status")
        if not result.ok:
            raise CommandError(f"fail2ban status failed: {_truncate(result.output.strip())}")

        jails: list[str] = []
        match = RE_JAIL_LIST.search(result.output)
        if match:
            jails = [name.strip() for name in match.group(1).split(",") if name.strip()]
        return Fail2BanStatusResponse(jail_count=len(jails), jail_list=jails)

    async def jail_details(self, jail: str) -> JailDetailsResponse:
        result = await self._run("status", jail)
        output = result.output
        if not result.ok:
            if OUT_DOES_NOT_EXIST in output or OUT_NOT_FOUND in output:
                raise JailNotFoundError(jail)
            raise CommandError(f"fail2ban status {jail} failed: {_truncate(output.strip())}")

        banned: list[str] = []
        match = RE_BANNED_IP_LIST.search(output)
        if match:
            banned = match.group(1).split()

        return JailDetailsResponse(
            jail_name=jail,
            currently_failed=_parse_int(RE_CURRENTLY_FAILED, output),
            total_failed=_parse_int(RE_TOTAL_FAILED, output),
            currently_banned=_parse_int(RE_CURRENTLY_BANNED, output),
            total_banned=_parse_int(RE_TOTAL_BANNED, output),
            banned_ip_list=banned,
        )

    async def unban(self, jail: str, ip: str) -> None:
        result = await self._run("set", jail, "unbanip", ip)
        output = result.output
        if not result.ok:
            if OUT_IS_NOT_BANNED in output:
                raise IPNotBannedError(f"{ip} in {jail}")
            if OUT_JAIL_NOT_FOUND in output or OUT_DOES_NOT_EXIST in output:
                raise JailNotFoundError(jail)
            raise CommandError(f"fail2ban unban failed: {_truncate(output.strip())}")

        logger.info(f"IP unbanned: jail={jail} ip={ip}")
