import sys

from girus_access.cli import main

sys.exit(main())
