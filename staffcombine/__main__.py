import sys

from staffcombine.cli import main

sys.exit(main())
