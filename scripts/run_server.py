from __future__ import annotations

from typing import Any

import uvicorn

from autoevaluacion.infrastructure.config import Settings, get_settings

APP_PATH = "autoevaluacion.web.main:app"


def server_options(settings: Settings | None = None) -> dict[str, Any]:
    settings = settings or get_settings()
    return {
        "host": settings.app.host,
        "port": settings.app.port,
        "reload": settings.app.reload and settings.is_development(),
        "log_level": settings.logging.level.lower(),
    }


def main() -> None:
    options = server_options()
    print(f"[run-server] Serving {APP_PATH} on http://{options['host']}:{options['port']}")
    uvicorn.run(APP_PATH, **options)


if __name__ == "__main__":
    main()
