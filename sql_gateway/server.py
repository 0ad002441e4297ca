import asyncio
import logging
from pathlib import Path
from typing import List

import uvicorn

from sql_gateway.core.config import Settings, settings

logger = logging.getLogger(__name__)

APP_PATH = "sql_gateway.main:app"


def tls_files_present(config: Settings) -> bool:
    return Path(config.SSL_CERT_FILE).is_file() and Path(config.SSL_KEY_FILE).is_file()


def build_servers(config: Settings) -> List[uvicorn.Server]:
    """
    Plain HTTP is always served. HTTPS is added only when the certificate
    and key are on disk, a missing certificate is not an error.
    """
    servers = [
        uvicorn.Server(
            uvicorn.Config(
                APP_PATH,
                host=config.HOST,
                port=config.HTTP_PORT,
                log_level=config.LOG_LEVEL.lower(),
            )
        )
    ]

    if tls_files_present(config):
        servers.append(
            uvicorn.Server(
                uvicorn.Config(
                    APP_PATH,
                    host=config.HOST,
                    port=config.HTTPS_PORT,
                    log_level=config.LOG_LEVEL.lower(),
                    ssl_certfile=config.SSL_CERT_FILE,
                    ssl_keyfile=config.SSL_KEY_FILE,
                )
            )
        )
        logger.info(f"HTTPS enabled on https://{config.HOST}:{config.HTTPS_PORT}")
    else:
        logger.warning(
            f"TLS certificate or key not found ({config.SSL_CERT_FILE}, "
            f"{config.SSL_KEY_FILE}), HTTPS listener disabled"
        )

    logger.info(f"HTTP enabled on http://{config.HOST}:{config.HTTP_PORT}")
    return servers


async def serve(config: Settings) -> None:
    servers = build_servers(config)
    await asyncio.gather(*(server.serve() for server in servers))


def main() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
