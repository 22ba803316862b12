"""
IPC Library Functions

This module contains very UNIX-specific code to allow interactive
communication with another program. The tools need it to talk to
kadmin, which only prompts properly when it runs on a terminal.
"""
import os
import pty
import select


class _pty_file(object):
    """
    A 'file'-like wrapper class for pseudoterminal file descriptors.

    This wrapper is necessary because Python has a nasty
    habit of throwing OSError at pty EOF.

    This class also implements timeouts for read operations
    which are handy for avoiding deadlock when both
    processes are blocked in a read().
    """
    def __init__(self, fd, encoding='utf-8'):
        self.fd = fd
        self.encoding = encoding
        self.buffer = ''
        self.closed = False

    def __repr__(self):
        status = 'open'
        if self.closed:
            status = 'closed'
        return "<%s pty %d>" % (status, self.fd)

    def _read(self, size):
        return os.read(self.fd, size).decode(self.encoding, 'replace')

    def read(self, size=-1, block=True, timeout=0.1):
        if self.closed:
            raise ValueError('I/O operation on closed pty')
        if size < 0:
            data = None

            # read data, catching OSError as EOF
            try:
                while data != '':

                    # wait timeout for the pty to become ready, otherwise stop reading
                    if not block and len(select.select([self.fd], [], [], timeout)[0]) == 0:
                        break

                    data = self._read(65536)
                    self.buffer += data
            except OSError:
                pass

            data = self.buffer
            self.buffer = ''
            return data
        else:
            if len(self.buffer) < size:

                # read data, catching OSError as EOF
                try:

                    # wait timeout for the pty to become ready, then read
                    if block or len(select.select([self.fd], [], [], timeout)[0]) != 0:
                        self.buffer += self._read(size - len(self.buffer))

                except OSError:
                    pass

            data = self.buffer[:size]
            self.buffer = self.buffer[size:]
            return data

    def fileno(self):
        if self.closed:
            raise ValueError('I/O operation on closed pty')
        return self.fd

    def close(self):
        if not self.closed:
            os.close(self.fd)
        self.closed = True


def popeni(command, args, env=None):
    """
    Open an interactive session with another command.

    Parameters:
        command - the command to run (full path)
        args    - a list of arguments to pass to command
        env     - optional environment for command

    Returns: (pid, stdout, stdin)
    """

    # use a pipe to send data to the child
    child_stdin, parent_stdin = os.pipe()

    # a pipe for receiving data would cause buffering and
    # is therefore not suitable for interactive communication,
    # so a pty is used instead
    master, slave = pty.openpty()

    # collect both stdout and stderr on the pty
    parent_stdout, child_stdout = master, slave

    pid = os.fork()

    # child process
    if pid == 0:

        # close all of the parent's fds
        os.close(parent_stdin)
        os.close(parent_stdout)

        # create a new session to disconnect from the parent's
        # controlling terminal, then take the pty as ours
        os.setsid()
        fd = os.open(os.ttyname(child_stdout), os.O_RDWR)
        os.close(fd)

        # init stdin/out/err
        os.dup2(child_stdin, 0)
        os.dup2(child_stdout, 1)
        os.dup2(child_stdout, 2)

        try:
            if env:
                os.execve(command, args, env)
            else:
                os.execv(command, args)
        finally:
            os._exit(127)

    # parent process
    os.close(child_stdin)
    os.close(child_stdout)

    return pid, _pty_file(parent_stdout), os.fdopen(parent_stdin, 'w')
