import argparse
import atexit
import logging
import logging.handlers
import sys

from relay.config import settings
from relay.controller import RelayStartError, ServerController


def setup_logging():
    loglevel = settings.LOG_LEVEL.upper()
    # main log goes to stderr, stdout stays free for inbound messages
    logging.basicConfig(
        level=loglevel,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    # separate logger for per-message traffic
    traffic_logger = logging.getLogger("relay_traffic")
    if not traffic_logger.handlers:
        handler = logging.handlers.RotatingFileHandler(
            settings.TRAFFIC_LOG, maxBytes=10 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter("%(asctime)s | %(message)s"))
        traffic_logger.addHandler(handler)
    traffic_logger.setLevel(logging.DEBUG)
    traffic_logger.propagate = False


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Relay messages between stdin/stdout and TCP or WebSocket clients."
    )
    parser.add_argument("--mode", choices=["tcp", "ws"], default=settings.MODE)
    parser.add_argument("--port", type=int, default=None, help="defaults to RELAY_TCP_PORT / RELAY_WS_PORT")
    parser.add_argument("--host", default=None, help="bind address, defaults to RELAY_HOST")
    parser.add_argument("--along", metavar="PATH", help="program to run along the relay")
    parser.add_argument("--along-args", default="", help="arguments for --along, as one string")
    parser.add_argument("--show-window", action="store_true", help="show the --along program's window/output")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()
    config = settings.model_copy(update={"HOST": args.host}) if args.host else settings
    port = args.port or config.port_for(args.mode)

    controller = ServerController(config)
    atexit.register(controller.close)

    def print_message(message):
        print(message.text, flush=True)

    controller.message_received += print_message

    try:
        controller.start(args.mode, port)
        logging.info(f"Relay started, mode={args.mode}, port={port}")

        if args.along:
            controller.start_program_along(args.along, args.show_window, args.along_args)

        for line in sys.stdin:
            status = controller.send(line.rstrip("\r\n"))
            logging.info(status)
    except RelayStartError as e:
        logging.critical(str(e))
        return 1
    except KeyboardInterrupt:
        logging.info("Shutdown requested")
    finally:
        controller.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
