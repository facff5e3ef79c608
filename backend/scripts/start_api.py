import os
import sys

import uvicorn


def _read_port() -> int:
    """Fetch and validate the PORT environment variable."""
    value = os.environ.get("PORT", "8000")
    try:
        return int(value)
    except ValueError as exc:  # pragma: no cover - fatal configuration
        raise SystemExit(f"Invalid PORT '{value}': {exc}") from exc


def _read_workers() -> int:
    value = os.environ.get("WEB_CONCURRENCY", "1")
    try:
        return max(int(value), 1)
    except ValueError as exc:  # pragma: no cover - fatal configuration
        raise SystemExit(f"Invalid WEB_CONCURRENCY '{value}': {exc}") from exc


def main() -> None:
    uvicorn.run(
        "pharmacy_store.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=_read_port(),
        workers=_read_workers(),
    )


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:  # pragma: no cover - last line of defense
        print(f"Failed to start API: {exc}", file=sys.stderr)
        raise
