"""Module entrypoint.

Allows:
    python -m access_tail_stats
"""

from __future__ import annotations

from access_tail_stats.server.tail_server import main

if __name__ == "__main__":
    main()
