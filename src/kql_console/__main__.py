import sys

from kql_console.cli import main

sys.exit(main())
