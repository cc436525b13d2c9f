"""Allow ``python -m jcapsule app.jar``."""

import sys

from jcapsule.cli import main

sys.exit(main())
