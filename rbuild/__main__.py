import sys

from rbuild.cli import main

sys.exit(main())
