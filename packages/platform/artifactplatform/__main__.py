"""Entry point: python -m artifactplatform."""

import uvicorn

from artifactplatform.server import create_app
from artifactplatform.settings import SettingsManager


def main() -> None:
    sm = SettingsManager()
    settings = sm.load()
    app = create_app(settings_manager=sm)
    uvicorn.run(app, host="0.0.0.0", port=8430, log_level=settings.log_level)


if __name__ == "__main__":
    main()
