"""
useradd: create a new user in the directory and the KDC

The command line follows useradd(8). The account is written to LDAP as a
posixAccount entry (with a user private group when one is wanted), its
password goes to a new Kerberos principal, and the home directory and mail
spool are created on the local machine.
"""
import datetime
import getpass
import logging
import os
import re
import sys

from ldapusers import accounts, conf, homes, ids, ops
from ldapusers.conf import login_defs_value
from ldapusers.console.main import Command
from ldapusers.excep import InvalidArgument, ToolError, \
    E_BAD_ARG, E_ID_IN_USE, E_NOTFOUND, E_NAME_IN_USE
from ldapusers.krb import KrbException
from ldapusers.ldapi import LDAPException

logger = logging.getLogger(__name__)

# defaults of /etc/default/useradd
DEFAULT_GROUP = '100'
DEFAULT_HOME = '/home'
DEFAULT_INACTIVE = '-1'
DEFAULT_EXPIRE = ''
DEFAULT_SHELL = ''
DEFAULT_SKEL = '/etc/skel'

# options that can change the defaults with -D, and their keys
DEFAULTS_KEYS = [
    ('base_dir', 'HOME'),
    ('expiredate', 'EXPIRE'),
    ('inactive', 'INACTIVE'),
    ('gid', 'GROUP'),
    ('shell', 'SHELL'),
]

EPOCH = datetime.date(1970, 1, 1)


def parse_expiredate(value):
    """
    Parses an expiry date given as YYYY-MM-DD.

    Returns: a datetime.date, or None for an empty value (never expires)

    Example: parse_expiredate('2030-06-30') -> datetime.date(2030, 6, 30)
    """

    if value is None or value.strip() == '':
        return None
    value = value.strip()
    if not re.match(r'^[0-9]{4}-[0-9]{2}-[0-9]{2}$', value):
        raise InvalidArgument('expiredate', value, 'not in YYYY-MM-DD format')
    try:
        return datetime.datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise InvalidArgument('expiredate', value, 'no such date')


def split_comment(login, comment):
    """
    Derives the cn, sn and gecos attributes from the comment. The common
    name is the first comma separated field, the surname its first word.

    Example: split_comment('jdoe', 'Jane Doe,Room 1') -> ('Jane Doe', 'Jane', 'Jane Doe,Room 1')
    """

    if not comment:
        return login, login, login
    cn = comment.split(',')[0].strip() or login
    sn = cn.split()[0] if cn.split() else login
    return cn, sn, comment


class UserAdd(Command):
    command_name = 'useradd'
    usage = '''%prog [options] LOGIN
       %prog -D
       %prog -D [options]'''
    unsupported = [
        ('-R', '--root', True),
        ('-Z', '--selinux-user', True),
    ]

    @classmethod
    def add_options(cls, parser):
        parser.add_option('-b', '--base-dir', dest='base_dir', metavar='BASE_DIR',
            help='base directory for the home directory of the new account')
        parser.add_option('-c', '--comment', dest='comment', metavar='COMMENT',
            help='GECOS field of the new account')
        parser.add_option('-d', '--home-dir', '--home', dest='home', metavar='HOME_DIR',
            help='home directory of the new account')
        parser.add_option('-D', '--defaults', dest='defaults', action='store_true', default=False,
            help='print or change default useradd configuration')
        parser.add_option('-e', '--expiredate', dest='expiredate', metavar='EXPIRE_DATE',
            help='expiration date of the new account')
        parser.add_option('-f', '--inactive', dest='inactive', type='int', metavar='INACTIVE',
            help='password inactivity period of the new account')
        parser.add_option('-g', '--gid', dest='gid', metavar='GROUP',
            help='name or ID of the primary group of the new account')
        parser.add_option('-G', '--groups', dest='groups', action='append', metavar='GROUPS',
            help='list of supplementary groups of the new account')
        parser.add_option('-k', '--skel', dest='skel', metavar='SKEL_DIR',
            help='use this alternative skeleton directory')
        parser.add_option('-K', '--key', dest='keys', action='append', metavar='KEY=VALUE',
            help='override /etc/login.defs defaults')
        parser.add_option('-l', '--no-log-init', dest='no_log_init', action='store_true', default=False,
            help='do not add the user to the lastlog and faillog databases')
        parser.add_option('-m', '--create-home', dest='create_home', action='store_true', default=False,
            help="create the user's home directory")
        parser.add_option('-M', '--no-create-home', dest='no_create_home', action='store_true', default=False,
            help="do not create the user's home directory")
        parser.add_option('-N', '--no-user-group', dest='no_user_group', action='store_true', default=False,
            help='do not create a group with the same name as the user')
        parser.add_option('-o', '--non-unique', dest='non_unique', action='store_true', default=False,
            help='allow to create users with duplicate (non-unique) UID')
        parser.add_option('-p', '--password', dest='password', metavar='PASSWORD',
            help='cleartext password of the new Kerberos principal')
        parser.add_option('-r', '--system', dest='system', action='store_true', default=False,
            help='create a system account')
        parser.add_option('-s', '--shell', dest='shell', metavar='SHELL',
            help='login shell of the new account')
        parser.add_option('-u', '--uid', dest='uid', type='int', metavar='UID',
            help='user ID of the new account')
        parser.add_option('-U', '--user-group', dest='user_group', action='store_true', default=False,
            help='create a group with the same name as the user')
        parser.add_option('--policy', dest='policy', metavar='POLICY',
            help='Kerberos policy of the new principal (default: no policy)')

    def validate_options(self):
        opts = self.options

        if opts.defaults:
            if self.args:
                self.usage_error('no LOGIN may be given with -D')
            for name in ('comment', 'home', 'groups', 'skel', 'keys', 'password', 'uid', 'policy'):
                if getattr(opts, name) is not None:
                    self.usage_error('only -b, -e, -f, -g and -s may be combined with -D')
            for name in ('create_home', 'no_create_home', 'no_user_group', 'non_unique',
                    'system', 'user_group', 'no_log_init'):
                if getattr(opts, name):
                    self.usage_error('only -b, -e, -f, -g and -s may be combined with -D')
            return

        if len(self.args) != 1:
            self.usage_error('exactly one LOGIN must be given')
        if opts.create_home and opts.no_create_home:
            self.usage_error('options -m and -M conflict')
        if opts.user_group and opts.no_user_group:
            self.usage_error('options -U and -N conflict')
        if opts.user_group and opts.gid is not None:
            self.usage_error('options -U and -g conflict')
        if opts.non_unique and opts.uid is None:
            self.usage_error('-o flag is only allowed with the -u flag')

    def run(self):
        if self.options.defaults:
            return self.run_defaults()
        accounts.require_root()
        self.add_user(self.args[0])


    ### useradd -D ###

    def run_defaults(self):
        changes = {}
        for name, key in DEFAULTS_KEYS:
            value = getattr(self.options, name)
            if value is not None:
                changes[key] = value

        if 'EXPIRE' in changes:
            parse_expiredate(changes['EXPIRE'])

        if not changes:
            self.print_defaults()
            return

        accounts.require_root()
        conf.update_shell_vars(accounts.USERADD_FILE, changes)
        for key in sorted(changes):
            ops.audit('useradd defaults changed: %s=%s', key, changes[key])

    def print_defaults(self):
        defaults = conf.read_shell_vars(accounts.USERADD_FILE)
        for key, default in [('GROUP', DEFAULT_GROUP), ('HOME', DEFAULT_HOME),
                ('INACTIVE', DEFAULT_INACTIVE), ('EXPIRE', DEFAULT_EXPIRE),
                ('SHELL', DEFAULT_SHELL), ('SKEL', DEFAULT_SKEL),
                ('CREATE_MAIL_SPOOL', 'no')]:
            print('%s=%s' % (key, defaults.get(key, default)))


    ### useradd LOGIN ###

    def add_user(self, login):
        opts = self.options
        accounts.configure()
        accounts.validate_name(login, conf.read_nslcd(accounts.NSLCD_FILE))

        defs = accounts.login_defs(opts.keys)
        defaults = conf.read_shell_vars(accounts.USERADD_FILE)

        base_dir = opts.base_dir or defaults.get('HOME') or DEFAULT_HOME
        if opts.base_dir and not opts.create_home and not os.path.isdir(base_dir):
            raise ToolError('the base directory %s does not exist and -m is not set' % base_dir, E_BAD_ARG)
        home = opts.home or os.path.join(base_dir, login)
        skel = opts.skel or defaults.get('SKEL') or DEFAULT_SKEL
        shell = opts.shell if opts.shell is not None else defaults.get('SHELL', DEFAULT_SHELL)

        expire = opts.expiredate if opts.expiredate is not None else defaults.get('EXPIRE', DEFAULT_EXPIRE)
        expire = parse_expiredate(expire)
        inactive = opts.inactive
        if inactive is None:
            try:
                inactive = int(defaults.get('INACTIVE', DEFAULT_INACTIVE))
            except ValueError:
                raise InvalidArgument('INACTIVE', defaults['INACTIVE'], 'not a number')

        if opts.create_home:
            create_home = True
        elif opts.no_create_home or opts.system:
            create_home = False
        else:
            create_home = login_defs_value(defs, 'CREATE_HOME', False, bool)

        if opts.uid is not None and opts.uid < 0:
            raise InvalidArgument('uid', opts.uid, 'must not be negative')

        password = self.get_password()
        settings = accounts.resolve_settings(opts)

        with accounts.Session(settings, kadmin=True) as session:
            ld = session.ldap

            if accounts.user_exists(ld, login):
                raise ToolError("user '%s' already exists" % login, E_NAME_IN_USE)

            group_name, gid, create_group = self.primary_group(ld, login, defaults, defs)
            supplementary = self.supplementary_groups(ld, group_name)

            if opts.uid is not None:
                uid = opts.uid
                if accounts.uid_in_use(ld, uid) and not opts.non_unique:
                    raise ToolError("UID %d is not unique" % uid, E_ID_IN_USE)
            else:
                uid = ids.new_uid(ld, defs, opts.system)

            if opts.policy and opts.policy not in session.krb.list_policies():
                raise InvalidArgument('policy', opts.policy, 'no such Kerberos policy')

            created = []
            try:
                if create_group:
                    gid = ids.new_gid(ld, defs, opts.system)
                    ld.group_add(login, gid)
                    created.append(('group', login))
                    ops.audit('new group: name=%s, GID=%d', login, gid)

                cn, sn, gecos = split_comment(login, opts.comment)
                ld.user_add(login, uid, gid, home, shell=shell, gecos=gecos, cn=cn, sn=sn,
                    expire_days=(expire - EPOCH).days if expire else None,
                    inactive=inactive)
                created.append(('user', login))
                ops.audit('new user: name=%s, UID=%d, GID=%d, home=%s, shell=%s',
                    login, uid, gid, home, shell)

                # now make the user member of any additional groups specified
                for group in supplementary:
                    ld.group_add_member(group, login)
                    created.append(('member', group))
                    ops.audit("add '%s' to group '%s'", login, group)

                principal = settings.principal_name(login)
                session.krb.add_principal(principal, password, policy=opts.policy,
                    expire=expire.strftime('%Y-%m-%d 23:59:59') if expire else None)
                ops.audit('new principal: %s', principal)
            except (LDAPException, KrbException):
                self.rollback(ld, login, created)
                raise

        if create_home:
            homes.create_home(home, skel, uid, gid, homes.home_mode(defs))
        if defaults.get('CREATE_MAIL_SPOOL', 'no').lower() == 'yes':
            homes.create_mail_spool(accounts.cfg['mail_spool_dir'], login, uid)


    def get_password(self):
        """The principal's password: from -p, or typed in twice on a terminal."""

        password = self.options.password
        if password is None:
            if not sys.stdin.isatty():
                raise InvalidArgument('password', '', 'a password must be supplied with -p')
            password = getpass.getpass('New password: ')
            if getpass.getpass('Retype new password: ') != password:
                raise InvalidArgument('password', '<hidden>', 'passwords do not match')
        if password == '':
            raise InvalidArgument('password', '', 'empty passwords are not allowed')
        return password


    def primary_group(self, ld, login, defaults, defs):
        """
        Works out the primary group of the new user.

        Returns: (name, gid, create) where create says that a user private
                 group named after the user must be added first
        """

        opts = self.options
        if opts.gid is not None:
            found = accounts.find_group(ld, opts.gid)
            if not found:
                raise ToolError("group '%s' does not exist" % opts.gid, E_NOTFOUND)
            return found[0], found[1], False

        if opts.user_group:
            user_group = True
        elif opts.no_user_group:
            user_group = False
        else:
            user_group = login_defs_value(defs, 'USERGROUPS_ENAB', False, bool)

        if user_group:
            if accounts.find_group(ld, login):
                raise ToolError("group %s exists - if you want to add this user to that group, use -g." % login,
                    E_NAME_IN_USE)
            return login, None, True

        group = defaults.get('GROUP') or DEFAULT_GROUP
        found = accounts.find_group(ld, group)
        if found:
            return found[0], found[1], False
        if group.isdigit():
            logger.warning('GID %s of the default group is not known', group)
            return None, int(group), False
        raise ToolError("group '%s' does not exist" % group, E_NOTFOUND)


    def supplementary_groups(self, ld, primary):
        """
        Resolves the -G groups to names, leaving out the primary group. The
        others must have directory entries to take the memberUid.
        """

        names = []
        for value in self.options.groups or []:
            for group in value.split(','):
                if not group.strip():
                    continue
                found = accounts.find_group(ld, group)
                if not found:
                    raise ToolError("group '%s' does not exist" % group, E_NOTFOUND)
                if found[0] == primary or found[0] in names:
                    continue
                if not ld.group_lookup(found[0]):
                    raise ToolError("group '%s' is not a directory group" % found[0], E_NOTFOUND)
                names.append(found[0])
        return names


    def rollback(self, ld, login, created):
        """Undoes the directory changes of a failed run, newest first."""

        for kind, name in reversed(created):
            try:
                if kind == 'member':
                    ld.group_remove_member(name, login)
                elif kind == 'user':
                    ld.user_delete(name)
                elif kind == 'group':
                    ld.group_delete(name)
            except LDAPException as e:
                logger.warning('could not undo %s %s: %s', kind, name, e)
