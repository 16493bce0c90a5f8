import sys

from star_etl.cli import main

sys.exit(main())
