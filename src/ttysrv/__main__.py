import sys

from ttysrv.main import main


sys.exit(main())
