"""
planexec main entry point
FastAPI server startup
"""

import uvicorn

from planexec.config import load_config
from planexec.gateway.app import create_app


def main():
    """Start planexec server"""
    config = load_config()
    server = config.get("server") or {}

    uvicorn.run(
        create_app(config),
        host=server.get("host", "0.0.0.0"),
        port=int(server.get("port", 8000)),
        log_level=str((config.get("logging") or {}).get("level", "info")).lower()
    )


if __name__ == "__main__":
    main()
