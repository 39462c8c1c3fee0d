from __future__ import annotations

from app.cli import app


def main() -> int:
    # Logging is configured per command, once --data-root is known.
    app()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
