import sys

from hookrelay.main import main

sys.exit(main())
