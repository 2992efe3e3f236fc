import logging


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    format_str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s" if verbose else "%(message)s"

    logging.basicConfig(level=level, format=format_str, datefmt="%Y-%m-%d %H:%M:%S")

    # Keep third-party chatter out of the console unless asked for.
    if not verbose:
        logging.getLogger("paho").setLevel(logging.WARNING)
        logging.getLogger("azure").setLevel(logging.WARNING)
