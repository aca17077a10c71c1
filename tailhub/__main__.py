import sys

from tailhub.main import main

sys.exit(main())
