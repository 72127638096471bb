"""Allow ``python -m ghostctl``; the local process manager relies on it."""
from __future__ import annotations

from .cli import main

if __name__ == "__main__":
    main()
