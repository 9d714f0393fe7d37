import sys

from brickkit.cli import main

raise SystemExit(main(sys.argv[1:]))
