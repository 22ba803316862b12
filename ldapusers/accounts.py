"""
Account Administration Helpers

This module holds what the four tools share: the tool configuration,
the resolution of connection settings from the command line and the
system configuration files, login and group name validation, lookups in
the local NSS databases, and the Session that ties together Kerberos
credentials, the LDAP connection and the kadmin connection.
"""
import grp
import logging
import os
import pwd
import re

from ldapusers import conf, krb, ldapi
from ldapusers.excep import ToolError, InvalidArgument, E_PW_UPDATE


logger = logging.getLogger(__name__)


### Configuration ###

CONFIG_FILE = '/etc/ldapusers/ldapusers.cf'
USERADD_FILE = '/etc/default/useradd'
LOGINDEFS_FILE = '/etc/login.defs'
NSLCD_FILE = '/etc/nslcd.conf'
KRB5_FILE = '/etc/krb5.conf'

DEFAULTS = {
    'keytab': '/etc/ldapusers/admin.keytab',
    'principal': 'ldapusers/admin',
    'sasl_mech': 'GSSAPI',
    'mail_spool_dir': '/var/mail',
    'crontab_dir': '/var/spool/cron/crontabs',
    'atjobs_dir': '/var/spool/cron/atjobs',
    'kadmin': krb.KADMIN,
    'kinit': krb.KINIT,
    'kdestroy': krb.KDESTROY,
}

cfg = {}

def configure():
    """Load the tool configuration. A missing configuration file leaves the defaults."""

    cfg_tmp = dict(DEFAULTS)
    if os.path.exists(CONFIG_FILE):
        loaded = conf.read(CONFIG_FILE)

        # verify configuration (not necessary, but prints a useful error)
        conf.check_string_fields(CONFIG_FILE, [key for key in DEFAULTS if key in loaded], loaded)
        cfg_tmp.update(loaded)

    cfg.clear()
    cfg.update(cfg_tmp)
    return cfg


def login_defs(overrides=None):
    """
    Reads /etc/login.defs, applying -K KEY=VALUE overrides.

    Parameters:
        overrides - list of "KEY=VALUE" strings
    """

    defs = conf.read_login_defs(LOGINDEFS_FILE)
    for override in overrides or []:
        if '=' not in override:
            raise InvalidArgument('-K', override, 'expected KEY=VALUE')
        key, val = override.split('=', 1)
        defs[key.strip()] = val.strip()
    return defs


class Settings(object):
    """
    Connection settings for one run of a tool.

    Attributes:
        keytab, principal - credentials of the administrative principal
        realm             - the Kerberos realm of new principals
        server            - the LDAP URI
        user_base         - base DN of user entries
        group_base        - base DN of group entries
        sasl_mech         - the SASL mechanism of the bind
    """

    def __init__(self, keytab, principal, realm, server, user_base, group_base, sasl_mech='GSSAPI'):
        self.keytab = keytab
        self.principal = principal
        self.realm = realm
        self.server = server
        self.user_base = user_base
        self.group_base = group_base
        self.sasl_mech = sasl_mech

    def principal_name(self, login):
        return '%s@%s' % (login, self.realm)


def resolve_settings(options):
    """
    Combines the common command line options with nslcd.conf, krb5.conf
    and the tool configuration.

    Exceptions:
        ToolError - when no realm or no directory base can be found
    """

    if not cfg:
        configure()
    nslcd = conf.read_nslcd(NSLCD_FILE)
    krb5 = conf.read_krb5(KRB5_FILE)

    realm = options.realm or krb5.get('libdefaults', {}).get('default_realm')
    if not realm:
        raise ToolError("no Kerberos realm given and none configured in %s" % KRB5_FILE, E_PW_UPDATE)

    server = options.server
    if not server:
        server = nslcd['uri'][0] if nslcd['uri'] else 'ldapi:///'

    base = options.base or nslcd.get('base')
    user_base = options.base or nslcd.get('base passwd') or base
    group_base = options.base or nslcd.get('base group') or base
    if not user_base or not group_base:
        raise ToolError("no LDAP base given and none configured in %s" % NSLCD_FILE, E_PW_UPDATE)

    principal = options.principal or cfg['principal']
    if '@' not in principal:
        principal = '%s@%s' % (principal, realm)

    return Settings(options.keytab or cfg['keytab'], principal, realm, server,
        user_base, group_base, cfg['sasl_mech'])


def require_root():
    if os.geteuid() != 0:
        raise ToolError("Permission denied. This tool must be run as root.", E_PW_UPDATE)



### Names ###

DEFAULT_VALID_NAMES = r'^[a-z0-9._@$][a-z0-9._@$ \\~-]*[a-z0-9._@$~-]*$'

def valid_names_regex(nslcd):
    """
    Compiles the validnames option of nslcd.conf, written as /REGEX/ with an
    optional trailing i, or the built-in default.
    """

    pattern = nslcd.get('validnames')
    flags = re.IGNORECASE
    if pattern:
        match = re.match(r'^/(.*)/([a-z]*)$', pattern)
        if match:
            pattern = match.group(1)
            flags = re.IGNORECASE if 'i' in match.group(2) else 0
    else:
        pattern = DEFAULT_VALID_NAMES
    try:
        return re.compile(pattern, flags)
    except re.error:
        logger.warning('ignoring unusable validnames in %s: %s', NSLCD_FILE, pattern)
        return re.compile(DEFAULT_VALID_NAMES, re.IGNORECASE)


def validate_name(name, nslcd=None):
    """
    Checks a login or group name against the constraints of useradd(8)
    and nslcd.conf(5).

    Exceptions:
        InvalidArgument - if the name is invalid
    """

    if nslcd is None:
        nslcd = conf.read_nslcd(NSLCD_FILE)

    if (not name
            or name[0] in '-+~'
            or re.search(r'[:,\s/]', name)
            or len(name) > 32
            or not valid_names_regex(nslcd).match(name)):
        raise InvalidArgument('name', name,
            'see useradd(8) and nslcd.conf(5) for the constraints on names')



### NSS Lookups ###

def nss_user(name):
    try:
        return pwd.getpwnam(name)
    except KeyError:
        return None


def nss_uid(uid):
    try:
        return pwd.getpwuid(uid)
    except KeyError:
        return None


def nss_group(group):
    """Looks up a group by name or numeric GID in the NSS databases."""

    try:
        if str(group).isdigit():
            return grp.getgrgid(int(group))
        return grp.getgrnam(group)
    except KeyError:
        return None


def find_group(ldap_connection, group):
    """
    Finds a group by name or numeric GID, in the directory first and then
    in the NSS databases.

    Returns: (name, gid) or None

    Example: find_group(connection, '100') -> ('users', 100)
    """

    group = str(group).strip()
    if group.isdigit():
        name = ldap_connection.group_by_gid(group)
        if name:
            return name, int(group)
    else:
        entry = ldap_connection.group_lookup(group)
        if entry and 'gidNumber' in entry:
            return group, int(entry['gidNumber'][0])

    entry = nss_group(group)
    if entry:
        return entry.gr_name, entry.gr_gid
    return None


def user_exists(ldap_connection, login):
    return ldap_connection.user_lookup(login) is not None or nss_user(login) is not None


def uid_in_use(ldap_connection, uid):
    users = ldap_connection.user_search('(&(objectClass=posixAccount)(uidNumber=%s))', [ uid ])
    return bool(users) or nss_uid(uid) is not None


def gid_in_use(ldap_connection, gid):
    return ldap_connection.group_by_gid(gid) is not None or nss_group(gid) is not None



### Sessions ###

class Session(object):
    """
    Everything a tool needs to talk to the directory and the KDC, set up
    in order and torn down in reverse:

        1. Kerberos credentials from the keytab into a private cache
        2. the SASL bind to the LDAP server
        3. optionally, a kadmin connection

    Example:
        with Session(settings, kadmin=True) as session:
            session.ldap.user_lookup('jdoe')
            session.krb.delete_principal('jdoe@EXAMPLE.COM')
    """

    def __init__(self, settings, kadmin=False):
        if not cfg:
            configure()
        self.settings = settings
        self.credentials = krb.Credentials(settings.principal, settings.keytab,
            cfg['kinit'], cfg['kdestroy'])
        self.ldap = ldapi.LDAPConnection()
        self.krb = krb.KrbConnection(cfg['kadmin']) if kadmin else None


    def __enter__(self):
        self.open()
        return self


    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False


    def open(self):
        settings = self.settings
        self.credentials.obtain()
        try:
            logger.debug('binding to %s', settings.server)
            self.ldap.connect_sasl(settings.server, settings.sasl_mech,
                settings.user_base, settings.group_base)
            if self.krb is not None:
                self.krb.connect(settings.principal, settings.keytab, settings.realm)
        except Exception:
            self.close()
            raise


    def close(self):
        try:
            if self.krb is not None:
                self.krb.disconnect()
            try:
                self.ldap.disconnect()
            except ldapi.LDAPException as e:
                logger.warning('%s', e)
        finally:
            self.credentials.destroy()
