import asyncio
import sys

from rembg_gateway.api.main import create_app
from rembg_gateway.core.config import Settings
from rembg_gateway.core.lifecycle import Lifecycle
from rembg_gateway.core.logging import setup_logging


def main() -> int:
    """Run the gateway until SIGINT/SIGTERM and return the exit code."""
    settings = Settings()
    setup_logging(settings.log_level, settings.log_format)

    lifecycle = Lifecycle(settings)
    app = create_app(settings, lifecycle=lifecycle)
    return asyncio.run(lifecycle.run(app))


if __name__ == "__main__":
    sys.exit(main())
