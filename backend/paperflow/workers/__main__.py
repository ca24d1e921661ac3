import sys

from paperflow.workers.runner import main

sys.exit(main())
