import sys

from flowpack.cli import main

sys.exit(main())
