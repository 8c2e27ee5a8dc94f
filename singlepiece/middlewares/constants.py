from singlepiece.common.logging_setup import get_logger

logger = get_logger("singlepiece.middlewares")
