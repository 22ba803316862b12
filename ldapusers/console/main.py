"""
Command Line Framework

Each tool is a subclass of Command. The class builds its option parser,
parses the command line, and runs; every error a tool can hit is turned
into a one line message on stderr and the matching exit status.
"""
import sys
from optparse import OptionParser, OptionGroup, OptionValueError

from ldapusers import ops
from ldapusers.conf import ConfigurationException
from ldapusers.excep import ToolError, InvalidArgument, E_SUCCESS, E_PW_UPDATE
from ldapusers.krb import KrbException
from ldapusers.ldapi import LDAPException


def _unsupported(option, opt_str, value, parser):
    raise OptionValueError("option %s is not supported by this tool (see --unsupported)" % opt_str)


class Command(object):
    """
    Base class for the tools.

    Class attributes to define in subclasses:
        command_name   - default program name in messages and syslog
        usage          - usage text shown in help
        unsupported    - list of (short, long, takes_value) options that
                         are recognised but not supported
        failure_status - exit status for directory and Kerberos failures

    Subclasses implement add_options(), validate_options() and run().
    """
    command_name = None
    usage = None
    unsupported = []
    failure_status = E_PW_UPDATE

    @classmethod
    def make_parser(cls, program):
        parser = OptionParser(prog=program, usage=cls.usage, add_help_option=False)
        parser.add_option('-h', '--help', dest='help', action='store_true', default=False,
            help='display this help message and exit')
        cls.add_options(parser)

        for short, long_opt, takes_value in cls.unsupported:
            parser.add_option(short, long_opt, action='callback', callback=_unsupported,
                type='string' if takes_value else None, help='not supported')
        parser.add_option('--unsupported', dest='list_unsupported', action='store_true',
            default=False, help='list the options of %s that are not supported' % program)

        group = OptionGroup(parser, 'LDAP and Kerberos options')
        group.add_option('--keytab', dest='keytab', metavar='FILE',
            help='keytab of the administrative principal')
        group.add_option('--principal', dest='principal', metavar='NAME',
            help='administrative principal to authenticate as')
        group.add_option('--realm', dest='realm', metavar='REALM',
            help='Kerberos realm (default: default_realm of krb5.conf)')
        group.add_option('--server', dest='server', metavar='URI',
            help='LDAP server URI (default: uri of nslcd.conf)')
        group.add_option('--base', dest='base', metavar='DN',
            help='LDAP base of the account entries (default: base of nslcd.conf)')
        group.add_option('--verbose', dest='verbose', action='store_true', default=False,
            help='print debugging information')
        parser.add_option_group(group)
        return parser

    @classmethod
    def add_options(cls, parser):
        pass

    @classmethod
    def run_cli(cls):
        """Run this command with sys.argv, exit process with the return value."""
        sys.exit(cls.main(sys.argv))

    @classmethod
    def main(cls, argv):
        """
        The main entry point.

        Parameters:
            argv - command line arguments, program name first

        Returns: the exit status
        """
        program = ops.program_name(argv[0]) if argv else cls.command_name
        parser = cls.make_parser(program)

        # exits with status 2 on malformed command lines
        options, args = parser.parse_args(list(argv[1:]))

        command = cls(program, parser, options, args)
        return command.execute()

    def __init__(self, program, parser, options, args):
        self.program = program
        self.parser = parser
        self.options = options
        self.args = args

    def usage_error(self, message):
        self.parser.error(message)

    def execute(self):
        """Handles --help and --unsupported, then validates and runs the command."""

        if self.options.help:
            self.parser.print_help()
            return E_SUCCESS
        if self.options.list_unsupported:
            for short, long_opt, takes_value in self.unsupported:
                print('%s, %s' % (short, long_opt))
            return E_SUCCESS

        ops.open_log(self.program)
        ops.setup_logging(self.program, self.options.verbose)

        self.validate_options()
        try:
            return self.run() or E_SUCCESS
        except (ToolError, InvalidArgument) as e:
            return self.fail(str(e), e.rval)
        except (LDAPException, KrbException, ConfigurationException) as e:
            return self.fail(str(e), self.failure_status)
        except KeyboardInterrupt:
            return self.fail('interrupted', E_PW_UPDATE)

    def fail(self, message, rval):
        sys.stderr.write('%s: %s\n' % (self.program, message))
        ops.report_failure('%s', message)
        return rval

    def validate_options(self):
        """Checks the command line. Calls usage_error() on bad combinations."""

    def run(self):
        raise NotImplementedError
