import os
import signal
import sys

sys.path.append(os.path.dirname(os.path.abspath(__file__)))
import uvicorn  # noqa: E402

from common.arguments import arguments  # noqa: E402
from common.logger import get_logger_config, logger  # noqa: E402
from handlers.socket import register_socketio_handlers  # noqa: E402
from server.shutdown import signal_handler  # noqa: E402
from server.startup import sio, socket_app  # noqa: E402


def main() -> None:
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    register_socketio_handlers(sio)

    logger.info(f"Starting sensor station with parameters {arguments}")
    try:
        uvicorn.run(
            socket_app,
            host=arguments.host,
            port=arguments.port,
            log_config=get_logger_config(arguments),
        )
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt in main")
        os._exit(0)
    except Exception as e:  # pragma: no cover - startup errors
        logger.error(f"Error starting sensor station: {str(e)}")
        logger.exception(e)
        os._exit(1)


if __name__ == "__main__":
    main()
