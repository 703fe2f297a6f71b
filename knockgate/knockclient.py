#!/usr/bin/env python3

import argparse
import socket
import sys
import time

from . import config
from . import knockutil
from . import log
from .errors import ConfigError, SequenceError


def send_knock(ip, port, connect_timeout):
    # Refused, filtered and accepted attempts all count as "sent".
    try:
        with socket.create_connection((ip, port), timeout=connect_timeout):
            pass
    except OSError:
        pass


def get_ip(host):
    return socket.gethostbyname(host)


def knock_sequence(host, sequence, delay, connect_timeout, sleep=time.sleep, logger=None):
    ip = get_ip(host)
    ports = sequence.knock_ports()
    cnt = len(ports)

    for i, port in enumerate(ports):
        if logger:
            logger.debug(f"Knock {i+1}/{cnt} on {ip}:{port}")
        send_knock(ip, port, connect_timeout)
        if i < cnt-1:
            sleep(delay)
    return cnt


def main(argv=None):
    argp = argparse.ArgumentParser(prog='knockgate-client',
                                   description='Knock to open port(s).')
    argp.add_argument('--host',
                      required=False,
                      default=None,
                      help="Hostname or IP address of host to contact.")
    argp.add_argument('--sequence',
                      required=False,
                      default=None,
                      help="Knock sequence as PORT[:HITS] items, e.g. 7001:3,8002,9003:2.")
    argp.add_argument('--delay',
                      required=False,
                      type=float,
                      default=None,
                      help="Seconds to wait between knocks.")
    argp.add_argument('--timeout',
                      required=False,
                      type=float,
                      default=None,
                      help="Seconds to wait for each connection attempt.")
    argp.add_argument('--config-file',
                      required=False,
                      default=None,
                      help="Path to configuration file.")
    argp.add_argument('-v', '--verbose',
                      action='store_true',
                      help="Log every knock.")

    v = argp.parse_args(argv)
    logger = log.Log("debug" if v.verbose else "info", False, name="knockgate-client")

    try:
        cfg = config.Config(v.config_file, logger)
        sequence = knockutil.parse_sequence(v.sequence) if v.sequence else cfg.sequence
    except (ConfigError, SequenceError) as e:
        logger.error(str(e))
        return 2

    host = v.host or cfg.client.host
    delay = cfg.client.delay if v.delay is None else v.delay
    connect_timeout = cfg.client.connect_timeout if v.timeout is None else v.timeout

    logger.info(f"Knocking {host} with sequence {sequence} (delay {delay}s)")
    try:
        cnt = knock_sequence(host, sequence, delay, connect_timeout, logger=logger)
    except OSError as e:
        logger.error(f"Unable to resolve host '{host}': {e}")
        return 1
    logger.info(f"Port knocking sent ({cnt} knocks)")
    return 0


if __name__ == '__main__':
    sys.exit(main())
