from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from ..errors import PortProbeError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NaabuResult:
    host: str
    ip: str
    port: int
    protocol: str = "tcp"
    cdn: bool = False
    cdn_name: str = ""


def _top_ports() -> int:
    try:
        return int(os.getenv("RECON_NAABU_TOP_PORTS", "100"))
    except ValueError:
        return 100


def _timeout_seconds() -> float:
    try:
        return float(os.getenv("RECON_NAABU_TIMEOUT_SECONDS", "120"))
    except ValueError:
        return 120.0


def parse_naabu_line(line: str) -> NaabuResult | None:
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
        return NaabuResult(
            host=str(data.get("host") or ""),
            ip=str(data.get("ip") or ""),
            port=int(data["port"]),
            protocol=data.get("protocol") or "tcp",
            cdn=bool(data.get("cdn")),
            cdn_name=data.get("cdn-name") or "",
        )
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        log.warning("failed to parse naabu line %r: %s", line[:200], e)
        return None


def parse_naabu_output(lines: Iterable[str]) -> tuple[list[NaabuResult], int]:
    """Parse naabu JSON lines. Returns (results, malformed_line_count)."""
    results: list[NaabuResult] = []
    malformed = 0
    for line in lines:
        if not line.strip():
            continue
        parsed = parse_naabu_line(line)
        if parsed is None:
            malformed += 1
            continue
        results.append(parsed)
    return results, malformed


def run_naabu_scan(
    ip: str, top_ports: int | None = None, timeout_seconds: float | None = None
) -> list[int]:
    """Probe the top N ports of a single IP and return the open ones."""
    binary = shutil.which("naabu")
    if not binary:
        raise PortProbeError("naabu not found in PATH")
    if top_ports is None:
        top_ports = _top_ports()
    if timeout_seconds is None:
        timeout_seconds = _timeout_seconds()

    cmd = [binary, "-host", ip, "-top-ports", str(top_ports), "-json", "-silent"]
    try:
        proc = subprocess.run(
            cmd, capture_output=True, text=True, timeout=timeout_seconds, check=True
        )
    except subprocess.TimeoutExpired as e:
        raise PortProbeError(f"naabu timed out after {timeout_seconds}s") from e
    except (subprocess.CalledProcessError, OSError) as e:
        raise PortProbeError(f"naabu execution failed: {e}") from e

    results, _ = parse_naabu_output(proc.stdout.splitlines())
    return sorted({r.port for r in results if r.ip == ip})


def build_naabu_hosts_command(
    binary: str,
    hosts_file: Path,
    output_file: Path,
    top_ports: str = "100",
    custom_ports: str = "",
    rate: int = 500,
    threads: int = 25,
    timeout_ms: int = 1000,
    exclude_cdn: bool = True,
) -> list[str]:
    # -display-cdn always on so cdn/cdn-name land in the stored rows
    cmd = [binary, "-l", str(hosts_file), "-json", "-o", str(output_file), "-display-cdn"]
    if exclude_cdn:
        cmd.append("-exclude-cdn")
    if custom_ports:
        cmd += ["-p", custom_ports]
    elif top_ports:
        cmd += ["-top-ports", top_ports]
    if rate > 0:
        cmd += ["-rate", str(rate)]
    if threads > 0:
        cmd += ["-c", str(threads)]
    if timeout_ms > 0:
        cmd += ["-timeout", str(timeout_ms)]
    return cmd


def run_naabu_hosts(
    hosts_file: Path,
    output_file: Path,
    top_ports: str = "100",
    custom_ports: str = "",
    rate: int = 500,
    threads: int = 25,
    timeout_ms: int = 1000,
    exclude_cdn: bool = True,
    process_timeout_seconds: float | None = None,
) -> Path:
    """Scan every host listed in a file, writing naabu JSON lines to output_file.

    CDN/WAF hosts only get 80 and 443 scanned unless exclude_cdn is False.
    """
    binary = shutil.which("naabu")
    if not binary:
        raise PortProbeError("naabu not found in PATH")
    if not hosts_file.exists():
        raise PortProbeError(f"hosts file not found: {hosts_file}")

    cmd = build_naabu_hosts_command(
        binary,
        hosts_file,
        output_file,
        top_ports=top_ports,
        custom_ports=custom_ports,
        rate=rate,
        threads=threads,
        timeout_ms=timeout_ms,
        exclude_cdn=exclude_cdn,
    )
    log.info("executing naabu: %s", " ".join(cmd))
    try:
        subprocess.run(cmd, check=True, timeout=process_timeout_seconds)
    except subprocess.TimeoutExpired as e:
        raise PortProbeError(f"naabu timed out after {process_timeout_seconds}s") from e
    except (subprocess.CalledProcessError, OSError) as e:
        raise PortProbeError(f"naabu execution failed: {e}") from e

    if not output_file.exists():
        # no open ports found
        output_file.write_text("", encoding="utf-8")
    return output_file
