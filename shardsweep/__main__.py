import sys

from shardsweep.cli import main

sys.exit(main())
