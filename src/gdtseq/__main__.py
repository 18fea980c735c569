"""Allow ``python -m gdtseq``."""

import sys

from gdtseq.cli import main

sys.exit(main())
