import asyncio
import configparser
import os
from pathlib import Path

import relaydrop.avails.constants as const
from relaydrop.configurations import logger as _logger


def print_constants():
    print_string = (
        f'\n:configuration choices{"=" * 32}\n'
        f'{"RELAY_URL": <22} : {const.RELAY_URL: <10}\n'
        f'{"CHUNK_SIZE": <22} : {const.CHUNK_SIZE: <10}\n'
        f'{"COMPLETION_THRESHOLD": <22} : {const.COMPLETION_THRESHOLD: <10}\n'
        f'{"MAX_RECONNECT_ATTEMPTS": <22} : {const.MAX_RECONNECT_ATTEMPTS: <10}\n'
        f'{"RECONNECT_DELAY": <22} : {const.RECONNECT_DELAY: <10}\n'
        f'{"STALL_TIMEOUT": <22} : {const.STALL_TIMEOUT: <10}\n'
        f'{"ABORT_ON_STALL": <22} : {const.ABORT_ON_STALL!s: <10}\n'
        f'{"=" * 54}\n'
    )
    print('GLOBAL VERSION', const.VERSIONS['GLOBAL'])
    return print(print_string)


def set_paths(root=None):
    const.PATH_CURRENT = Path(root or os.getcwd())
    const.PATH_LOG = Path(const.PATH_CURRENT, 'logs')
    const.PATH_CONFIG = Path(const.PATH_CURRENT, 'configs')
    const.PATH_CONFIG_FILE = Path(const.PATH_CONFIG, const.DEFAULT_CONFIG_FILE_NAME)

    downloads_path = Path(os.path.expanduser('~'), 'Downloads')
    # check if the directory exists
    if not os.path.exists(downloads_path):
        downloads_path = Path(os.path.expanduser('~'), 'Desktop')
    const.PATH_DOWNLOAD = Path(downloads_path, const.APP_NAME)

    try:
        os.makedirs(const.PATH_LOG, exist_ok=True)
    except OSError as e:
        _logger.error(f"Error creating directory: {e} from set_paths()")


async def load_configs(path=None):
    """Reads the INI file at ``path`` (``const.PATH_CONFIG_FILE`` by default) and applies it

    A missing file is created with the defaults first

    Raises:
        ValueError: if a value is out of its allowed range
    """
    path = Path(path or const.PATH_CONFIG_FILE)
    config_map = configparser.ConfigParser()

    def _helper():
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            write_default_configurations(path)
        config_map.read(path)

    await asyncio.to_thread(_helper)

    set_constants(config_map)
    _logger.debug(f"configuration loaded from {path}")
    return config_map


def write_default_configurations(path):
    default_config_file = (
        '[RELAY]\n'
        f'url = {const.RELAY_URL}\n'
        f'link_base = {const.LINK_BASE}\n'
        '\n'
        '[CONNECTION]\n'
        f'max_reconnect_attempts = {const.MAX_RECONNECT_ATTEMPTS}\n'
        f'reconnect_delay = {const.RECONNECT_DELAY}\n'
        f'reconnect_backoff_factor = {const.RECONNECT_BACKOFF_FACTOR}\n'
        f'reconnect_max_delay = {const.RECONNECT_MAX_DELAY}\n'
        f'keepalive_interval = {const.KEEPALIVE_INTERVAL}\n'
        f'receiver_ready_resend_delay = {const.RECEIVER_READY_RESEND_DELAY}\n'
        '\n'
        '[TRANSFER]\n'
        f'chunk_size = {const.CHUNK_SIZE}\n'
        f'completion_threshold = {const.COMPLETION_THRESHOLD}\n'
        f'stall_timeout = {const.STALL_TIMEOUT}\n'
        f'abort_on_stall = {"yes" if const.ABORT_ON_STALL else "no"}\n'
        f'ack_wait_timeout = {const.ACK_WAIT_TIMEOUT}\n'
    )
    with open(path, 'w+') as config_file:
        config_file.write(default_config_file)


def _non_negative(name, value):
    if value < 0:
        raise ValueError(f"{name} should not be negative, got {value}")
    return value


def set_constants(config_map: configparser.ConfigParser) -> bool:
    """Sets global constants from values in the configuration file.

    Options absent from ``config_map`` keep their current value.

    Returns:
        bool: True if configuration values were set successfully

    Raises:
        ValueError: on a value that cannot be used (chunk size <= 0, threshold outside (0, 1], negative delays)
    """

    const.RELAY_URL = config_map.get('RELAY', 'url', fallback=const.RELAY_URL)
    const.LINK_BASE = config_map.get('RELAY', 'link_base', fallback=const.LINK_BASE)

    const.MAX_RECONNECT_ATTEMPTS = _non_negative(
        'max_reconnect_attempts',
        config_map.getint('CONNECTION', 'max_reconnect_attempts', fallback=const.MAX_RECONNECT_ATTEMPTS),
    )
    const.RECONNECT_DELAY = _non_negative(
        'reconnect_delay',
        config_map.getfloat('CONNECTION', 'reconnect_delay', fallback=const.RECONNECT_DELAY),
    )
    const.RECONNECT_BACKOFF_FACTOR = config_map.getfloat(
        'CONNECTION', 'reconnect_backoff_factor', fallback=const.RECONNECT_BACKOFF_FACTOR
    )
    if const.RECONNECT_BACKOFF_FACTOR < 1:
        raise ValueError(f"reconnect_backoff_factor should be at least 1, got {const.RECONNECT_BACKOFF_FACTOR}")
    const.RECONNECT_MAX_DELAY = _non_negative(
        'reconnect_max_delay',
        config_map.getfloat('CONNECTION', 'reconnect_max_delay', fallback=const.RECONNECT_MAX_DELAY),
    )
    const.KEEPALIVE_INTERVAL = _non_negative(
        'keepalive_interval',
        config_map.getfloat('CONNECTION', 'keepalive_interval', fallback=const.KEEPALIVE_INTERVAL),
    )
    const.RECEIVER_READY_RESEND_DELAY = _non_negative(
        'receiver_ready_resend_delay',
        config_map.getfloat('CONNECTION', 'receiver_ready_resend_delay', fallback=const.RECEIVER_READY_RESEND_DELAY),
    )

    chunk_size = config_map.getint('TRANSFER', 'chunk_size', fallback=const.CHUNK_SIZE)
    if chunk_size <= 0:
        raise ValueError(f"chunk_size should be positive, got {chunk_size}")
    const.CHUNK_SIZE = chunk_size

    threshold = config_map.getfloat('TRANSFER', 'completion_threshold', fallback=const.COMPLETION_THRESHOLD)
    if not 0 < threshold <= 1:
        raise ValueError(f"completion_threshold should be in (0, 1], got {threshold}")
    if threshold < 1:
        _logger.warning(
            f"completion threshold {threshold} lets the receiver assemble before every byte arrived,"
            f" a short file is reported as a size mismatch"
        )
    const.COMPLETION_THRESHOLD = threshold

    const.STALL_TIMEOUT = _non_negative(
        'stall_timeout',
        config_map.getfloat('TRANSFER', 'stall_timeout', fallback=const.STALL_TIMEOUT),
    )
    const.ABORT_ON_STALL = config_map.getboolean('TRANSFER', 'abort_on_stall', fallback=const.ABORT_ON_STALL)
    const.ACK_WAIT_TIMEOUT = _non_negative(
        'ack_wait_timeout',
        config_map.getfloat('TRANSFER', 'ack_wait_timeout', fallback=const.ACK_WAIT_TIMEOUT),
    )

    return True
