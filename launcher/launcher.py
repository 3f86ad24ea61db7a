#!/usr/bin/env python3
"""
Game Server Wrapper entry script
--------------------------------
Called by the container entrypoint once the server files are in place:

    exec /home/container/launcher.py run "${STARTUP}"

Exit codes: 12 no startup arguments, 13 server executable missing,
14 console bridge (RCON client) unavailable, 2 other configuration errors,
otherwise the server's own exit code.
"""

import sys
from server_wrapper.cli import main

if __name__ == "__main__":
    sys.exit(main())
