#!/usr/bin/env python3

import argparse
import os
import signal
import socket
import sys
import threading

from . import config
from . import granter
from . import knocktrack
from . import log
from .errors import ConfigError, KnockGateError, ListenerStartupError


class ListenerManager:
    """One passive TCP socket and accept thread per distinct knock port."""

    def __init__(self, ports, tracker, logger, bind_address="0.0.0.0", backlog=128,
                 accept_timeout=0.5):
        self.ports = list(dict.fromkeys(ports))
        self.tracker = tracker
        self.logger = logger
        self.bind_address = bind_address
        self.backlog = backlog
        self.accept_timeout = accept_timeout
        self.sockets = []
        self.threads = []
        self._stop = threading.Event()


    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()


    def _bind(self, port):
        # "0.0.0.0" gives an IPv4 socket, "::" a dual-stack IPv6 one
        family, _, _, _, sockaddr = socket.getaddrinfo(self.bind_address, port, 0, socket.SOCK_STREAM,
                                                       0, socket.AI_PASSIVE)[0]
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if family == socket.AF_INET6:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            sock.bind(sockaddr)
            sock.listen(self.backlog)
            sock.settimeout(self.accept_timeout)
        except OSError:
            sock.close()
            raise
        return sock


    def start(self):
        # Bind everything before accepting anything. A partial knock
        # surface is not allowed to run.
        self._stop.clear()
        for port in self.ports:
            try:
                self.sockets.append(self._bind(port))
            except OSError as e:
                self._close_sockets()
                raise ListenerStartupError(port, e) from e

        for sock, port in zip(self.sockets, self.ports):
            self.logger.info(f"Listening for knock on port {port}")
            t = threading.Thread(target=self._accept_loop, args=(sock, port),
                                 name=f"knock-listen-{port}", daemon=True)
            t.start()
            self.threads.append(t)


    def stop(self, timeout=None):
        self._stop.set()
        for t in self.threads:
            t.join(timeout)
        self.threads = []
        self._close_sockets()


    def _close_sockets(self):
        for sock in self.sockets:
            try:
                sock.close()
            except OSError as e:
                self.logger.debug(f"Error closing listener socket: {e}")
        self.sockets = []


    def _accept_loop(self, sock, port):
        while not self._stop.is_set():
            try:
                conn, addr = sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._stop.is_set():
                    break
                self.logger.warning(f"Accept failed on port {port}: {e}")
                continue

            # The connection attempt is the knock; nothing is read or sent.
            try:
                conn.close()
            except OSError as e:
                self.logger.debug(f"Error closing knock connection on port {port}: {e}")

            address = knock_address(addr)
            try:
                self.tracker.record_knock(address, port)
            except Exception:
                self.logger.exception(f"Failed to process knock from {address} on port {port}")


def knock_address(addr):
    # IPv4 clients on a dual-stack socket arrive as ::ffff:a.b.c.d
    host = addr[0]
    if host.startswith("::ffff:") and "." in host:
        host = host[len("::ffff:"):]
    return host


def create_pidfile(pidfile, logger):
    try:
        pf = open(pidfile, "xt")
    except FileExistsError:
        logger.critical("Pid file already exists. Exiting.")
        sys.exit(1)

    with pf:
        pf.write(str(os.getpid()))


def main_loop(cfg, logger, stop_event):
    tracker = knocktrack.KnockTrack(cfg.sequence, cfg.listener.knock_timeout, logger,
                                    granter.LogGranter(logger))
    listeners = ListenerManager(cfg.sequence.distinct_ports(), tracker, logger,
                                bind_address=cfg.listener.bind_address,
                                backlog=cfg.listener.backlog)

    logger.info(f"Knock sequence: {cfg.sequence}")
    logger.info(f"Knock timeout: {cfg.listener.knock_timeout}s")

    listeners.start()
    tracker.start_sweeper(cfg.listener.sweep_interval)
    logger.info("Port knocking server running...")
    try:
        stop_event.wait()
    finally:
        logger.info("Shutting down knock listeners.")
        tracker.stop_sweeper()
        listeners.stop()


def main(argv=None):

    tmp_logger = log.Log("info", False)

    argp = argparse.ArgumentParser(prog='knockgate-listen',
                                   description='Service that listens for port knocking.')
    argp.add_argument('--config-file',
                      required=False,
                      default=None,
                      help="Path to configuration file. Built-in defaults are used if omitted.")

    args = argp.parse_args(argv)

    try:
        cfg = config.Config(args.config_file, tmp_logger)
    except ConfigError as e:
        tmp_logger.critical(str(e))
        return 1
    # initialize logger
    logger = log.Log(cfg.logging.log_level, cfg.logging.syslog,
                     syslog_address=cfg.logging.syslog_address)
    tmp_logger = None

    stop_event = threading.Event()

    def shutdown(signum, frame):
        logger.info(f"Received signal {signum}")
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    pidfile = cfg.listener.pidfile
    if pidfile:
        create_pidfile(pidfile, logger)
    try:
        main_loop(cfg, logger, stop_event)
    except ListenerStartupError as e:
        logger.critical(str(e))
        return 1
    except KnockGateError as e:
        logger.critical(e)
        raise
    finally:
        if pidfile:
            os.remove(pidfile)
    return 0


if __name__ == '__main__':
    sys.exit(main())
