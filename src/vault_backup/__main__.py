"""Allow `python -m vault_backup` to start an interactive backup."""

from .cli import main

if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()
