"""
Audit Logging

Account changes are reported to syslog under the auth facility, the
same way the shadow-utils tools report them, so that existing log
monitoring keeps working.
"""
import logging
import os
import sys
import syslog


def open_log(program):
    """Sets up syslog for the named tool."""

    syslog.openlog(program, syslog.LOG_PID, syslog.LOG_AUTH)


def audit(message, *args):
    """Records a successful change."""

    syslog.syslog(syslog.LOG_INFO, message % args)


def report_failure(message, *args):
    """Records a failed change."""

    syslog.syslog(syslog.LOG_ERR, message % args)


def setup_logging(program, verbose=False):
    """Sends diagnostic messages to stderr, prefixed with the tool's name."""

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter('%s: %%(message)s' % program))
    root = logging.getLogger('ldapusers')
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.propagate = False


def program_name(argv0):
    return os.path.basename(argv0) or 'useradd'
