import sys

from restock_monitor.cli import main

sys.exit(main())
