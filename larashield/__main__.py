import sys

from larashield.cli import main

sys.exit(main())
