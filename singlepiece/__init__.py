import logging

logger = logging.getLogger("singlepiece.app")
