"""Allow running as python -m assistant_speech."""

from assistant_speech.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
