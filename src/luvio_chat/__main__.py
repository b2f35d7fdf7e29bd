"""Allow ``python -m luvio_chat``."""

import sys

from .cli import main

sys.exit(main())
