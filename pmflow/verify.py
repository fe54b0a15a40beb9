"""Project verification: pick a check for the project type and run it."""

from __future__ import annotations

import logging
import re
import sys
import uuid
from pathlib import Path
from typing import List, Optional, Tuple

from .contracts import EventRecord, VerifyOutcome
from .journal import EventJournal
from .process import CommandExecutor, platform_command

logger = logging.getLogger(__name__)

PYTHON_MARKERS = ("pyproject.toml", "requirements.txt", "setup.py")
_CLI_CANDIDATE = re.compile(r"^cli\.(js|mjs|cjs|py|ps1)$", re.IGNORECASE)
SKIP_REASON = "No package.json, python markers, or cli.* candidate found."


def _command_id(label: str) -> str:
    return f"verify-{uuid.uuid4().hex[:8]}-{label}"


def find_cli_candidate(project_dir: Path) -> Optional[str]:
    """Return the first ``cli.*`` script in ``project_dir`` by name."""
    for entry in sorted(p.name for p in project_dir.iterdir()):
        if _CLI_CANDIDATE.match(entry):
            return entry
    return None


def cli_help_command(candidate: str) -> Tuple[str, str, List[str]]:
    """Return (display text, executable, args) for ``<candidate> --help``."""
    suffix = candidate.rsplit(".", 1)[-1].lower()
    if suffix == "py":
        return f"python {candidate} --help", sys.executable, [candidate, "--help"]
    if suffix == "ps1":
        args = ["-NoProfile", "-ExecutionPolicy", "Bypass", "-File", candidate, "--help"]
        return f"powershell {' '.join(args)}", "powershell", args
    return f"node {candidate} --help", "node", [candidate, "--help"]


async def run_verify(
    project_dir: str | Path, journal: EventJournal, transcript_path: Optional[str | Path]
) -> VerifyOutcome:
    """Run the most appropriate check for ``project_dir``.

    Node projects run ``npm test`` (then ``npm run test`` if that fails),
    Python projects run ``pytest``, otherwise a ``cli.*`` script is run with
    ``--help``. When none applies the outcome is skipped, not failed.
    """
    root = Path(project_dir)
    executor = CommandExecutor(journal, transcript_path)
    await journal.append(
        EventRecord(source="verify", kind="verify_start", payload={"project_dir": str(root)})
    )

    code: Optional[int] = None
    command = ""
    reason: Optional[str] = None

    if (root / "package.json").exists():
        command = "npm test"
        result = await executor.run(
            source="verify",
            cwd=str(root),
            command=platform_command("npm"),
            args=["test"],
            command_id=_command_id("npm-test"),
        )
        if result.code != 0:
            command = "npm run test"
            result = await executor.run(
                source="verify",
                cwd=str(root),
                command=platform_command("npm"),
                args=["run", "test"],
                command_id=_command_id("npm-run-test"),
            )
        code = result.code
    elif any((root / marker).exists() for marker in PYTHON_MARKERS):
        command = "pytest"
        result = await executor.run(
            source="verify",
            cwd=str(root),
            command="pytest",
            command_id=_command_id("pytest"),
        )
        code = result.code
    else:
        candidate = find_cli_candidate(root)
        if candidate:
            command, executable, args = cli_help_command(candidate)
            result = await executor.run(
                source="verify",
                cwd=str(root),
                command=executable,
                args=args,
                command_id=_command_id("cli-help"),
            )
            code = result.code
        else:
            reason = SKIP_REASON
            logger.info(f"Verification skipped for {root}: {reason}")
            await journal.append(
                EventRecord(source="verify", kind="verify_skip", payload={"reason": reason})
            )

    await journal.append(
        EventRecord(source="verify", kind="verify_end", payload={"command": command, "code": code})
    )
    return VerifyOutcome(
        passed=code == 0,
        command=command,
        code=code,
        skipped=reason is not None,
        reason=reason,
    )
