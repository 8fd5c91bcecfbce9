import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from oci_chartrepo import http_server, server

if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "mcp":
        asyncio.run(server.main())
    else:
        http_server.cli_main()
