import sys

from mcp_manager.cli import main

sys.exit(main())
