"""
Exceptions Module

This module provides some simple but generally useful exception classes.
"""

# exit statuses shared with the shadow-utils tools
E_SUCCESS = 0
E_PW_UPDATE = 1
E_USAGE = 2
E_BAD_ARG = 3
E_ID_IN_USE = 4
E_NOTFOUND = 6
E_IN_USE = 8
E_NAME_IN_USE = 9
E_GRP_UPDATE = 10
E_HOMEDIR = 12


class InvalidArgument(Exception):
    """Exception class for bad argument values."""
    def __init__(self, argname, argval, explanation, rval=E_BAD_ARG):
        Exception.__init__(self)
        self.argname, self.argval, self.explanation = argname, argval, explanation
        self.rval = rval
    def __str__(self):
        return 'Bad argument value "%s" for %s: %s' % (self.argval, self.argname, self.explanation)


class ToolError(Exception):
    """An error message along with the exit status it maps to."""
    def __init__(self, msg, rval=E_PW_UPDATE):
        Exception.__init__(self, msg)
        self.rval = rval
