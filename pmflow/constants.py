"""Shared constants for pmflow."""

STEP_TYPES = ("codex", "shell", "verify", "report", "repeat")

PM_DIRNAME = ".pm"
JOURNAL_FILENAME = "run.jsonl"
TRANSCRIPT_FILENAME = "session.log"
PROMPT_FILENAME = "prompt.txt"
IDEA_FILENAME = "idea.md"
META_FILENAME = "meta.json"
REPORT_FILENAME = "report.html"

# Bytes requested per read from a child process pipe.
STREAM_CHUNK_SIZE = 65536

# Exit code reported when a process could not be spawned at all.
SPAWN_FAILURE_CODE = -1
