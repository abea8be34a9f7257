import sys

from rembg_gateway.main import main

sys.exit(main())
