import sys

from meshlink.main import main

sys.exit(main())
