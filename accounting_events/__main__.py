"""Entry point for python -m accounting_events."""

import sys

from accounting_events.cli import main


sys.exit(main())
