import logging

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def setup_logger(name: str = "trading", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    # 同名 logger 重复 setup 时不再叠加 handler，避免日志重复输出
    if any(getattr(h, "_perp_console", False) for h in logger.handlers):
        return logger
    ch = logging.StreamHandler()
    ch.setFormatter(logging.Formatter(_FORMAT))
    ch._perp_console = True  # type: ignore[attr-defined]
    logger.addHandler(ch)
    return logger
