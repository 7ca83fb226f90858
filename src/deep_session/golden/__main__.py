import sys

from deep_session.golden.cli import main

sys.exit(main())
