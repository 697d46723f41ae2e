"""Entry point for running the notifier as a module.

Usage:
    python -m notifier poll
    python -m notifier --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from notifier.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
