import sys

from terminal_ai.ui.cli.app import main

sys.exit(main())
