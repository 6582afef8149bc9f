import logging

logger = logging.getLogger("relaydrop.transfers")
