import logging, os, sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"


def setup_logger(run_id: str, log_dir: str = "logs") -> logging.Logger:
    logger = logging.getLogger("labclaim")
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    logger.propagate = False
    fmt = logging.Formatter(LOG_FORMAT)
    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(fmt)
    logger.addHandler(sh)
    try:
        os.makedirs(log_dir, exist_ok=True)
        fh = logging.FileHandler(os.path.join(log_dir, f"labclaim_{run_id}.log"), encoding="utf-8")
    except OSError as e:
        logger.warning(f"⚠️  File logging disabled ({log_dir}): {e}")
    else:
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    # The Azure SDK is chatty at INFO
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("azure.identity").setLevel(logging.WARNING)
    return logger
