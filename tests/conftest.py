"""
Common Test Routines

Stand-ins for the external services: a python-ldap connection object
backed by a dictionary, a kadmin connection that remembers principals,
and a tools fixture that points every configuration file at a temporary
directory.
"""
import logging
import os
import re

import ldap
import pytest

from ldapusers import accounts, ids, ldapi, ops
from ldapusers.krb import KrbException, NoSuchPrincipal

USER_BASE = 'ou=People,dc=example,dc=com'
GROUP_BASE = 'ou=Group,dc=example,dc=com'


def _unescape(value):
    return re.sub(r'\\([0-9a-fA-F]{2})', lambda m: chr(int(m.group(1), 16)), value)


class FakeDirectory(object):
    """Enough of ldap.ldapobject.LDAPObject for the tools, over a dictionary."""

    def __init__(self):
        self.entries = {}
        self.unbound = False

    def _match(self, attrs, filterstr):
        for key, value in re.findall(r'\(([A-Za-z]+)=([^()]*)\)', filterstr):
            values = [v.decode('utf-8').lower() for k, vs in attrs.items()
                      if k.lower() == key.lower() for v in vs]
            if value == '*':
                if not values:
                    return False
            elif _unescape(value).lower() not in values:
                return False
        return True

    def search_s(self, base, scope, filterstr='(objectClass=*)', attrlist=None, attrsonly=0):
        if scope == ldap.SCOPE_BASE:
            if base not in self.entries:
                raise ldap.NO_SUCH_OBJECT({'desc': 'No such object'})
            candidates = [base]
        else:
            candidates = [dn for dn in sorted(self.entries) if dn.lower().endswith(base.lower())]
        results = []
        for dn in candidates:
            attrs = self.entries[dn]
            if self._match(attrs, filterstr):
                if attrlist:
                    attrs = dict((k, v) for k, v in attrs.items() if k in attrlist)
                results.append((dn, dict((k, list(v)) for k, v in attrs.items())))
        return results

    def add_s(self, dn, modlist):
        if dn in self.entries:
            raise ldap.ALREADY_EXISTS({'desc': 'Already exists'})
        self.entries[dn] = dict((attr, list(values)) for attr, values in modlist)

    def delete_s(self, dn):
        if dn not in self.entries:
            raise ldap.NO_SUCH_OBJECT({'desc': 'No such object'})
        del self.entries[dn]

    def modify_s(self, dn, mlist):
        if dn not in self.entries:
            raise ldap.NO_SUCH_OBJECT({'desc': 'No such object'})
        entry = self.entries[dn]
        for op, attr, values in mlist:
            if op == ldap.MOD_ADD:
                current = entry.setdefault(attr, [])
                for value in values:
                    if value in current:
                        raise ldap.TYPE_OR_VALUE_EXISTS({'desc': 'Type or value exists'})
                    current.append(value)
            elif op == ldap.MOD_DELETE:
                current = entry.get(attr, [])
                for value in values:
                    if value not in current:
                        raise ldap.NO_SUCH_ATTRIBUTE({'desc': 'No such attribute'})
                    current.remove(value)
                if not current:
                    entry.pop(attr, None)
            else:
                entry[attr] = list(values)

    def unbind_s(self):
        self.unbound = True

    # helpers for assertions
    def get(self, dn):
        entry = self.entries.get(dn)
        if entry is None:
            return None
        return dict((k, [v.decode('utf-8') for v in vs]) for k, vs in entry.items())


class FakeKadmin(object):
    """Stands in for krb.KrbConnection."""

    def __init__(self):
        self.principals = {}
        self.policies = ['default', 'users']
        self.fail_add = False

    def list_policies(self):
        return list(self.policies)

    def add_principal(self, principal, password, policy=None, expire=None,
            attributes=('+requires_preauth', '+needchange')):
        if self.fail_add:
            raise KrbException('add_principal: Insufficient access')
        if principal in self.principals:
            raise KrbException('principal %s already exists' % principal)
        self.principals[principal] = {
            'password': password, 'policy': policy,
            'expire': expire, 'attributes': attributes,
        }

    def delete_principal(self, principal):
        if principal not in self.principals:
            raise NoSuchPrincipal(principal)
        del self.principals[principal]


@pytest.fixture(autouse=True)
def reset_logging():
    """Drops the handler a tool installs, which writes to that test's captured stderr."""

    yield
    logger = logging.getLogger('ldapusers')
    logger.handlers[:] = []
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def connection(directory):
    conn = ldapi.LDAPConnection()
    conn.ldap = directory
    conn.user_base = USER_BASE
    conn.group_base = GROUP_BASE
    return conn


class Tools(object):
    """State of a tools test: files, fake services and what was audited."""

    def __init__(self, root, connection, directory):
        self.root = root
        self.connection = connection
        self.directory = directory
        self.kadmin = FakeKadmin()
        self.sessions = []
        self.audits = []

    def path(self, *parts):
        return os.path.join(str(self.root), *parts)

    def add_group(self, name, gid, members=()):
        self.connection.group_add(name, gid)
        for member in members:
            self.connection.group_add_member(name, member)

    def add_user(self, login, uid, gid, home=None):
        self.connection.user_add(login, uid, gid, home or self.path('home', login), shell='/bin/sh')

    def user(self, login):
        return self.directory.get('uid=%s,%s' % (login, USER_BASE))

    def group(self, name):
        return self.directory.get('cn=%s,%s' % (name, GROUP_BASE))


@pytest.fixture
def tools(tmp_path, monkeypatch, connection, directory):
    """
    Sets up the configuration files in tmp_path, replaces the Session with
    one over the fake services, and pretends to run as root.
    """

    env = Tools(tmp_path, connection, directory)
    for name in ('home', 'mail', 'crontabs', 'atjobs', 'skel'):
        os.mkdir(env.path(name))

    with open(env.path('ldapusers.cf'), 'w') as f:
        f.write('# test configuration\n')
        f.write('keytab = "%s"\n' % env.path('admin.keytab'))
        f.write('mail_spool_dir = "%s"\n' % env.path('mail'))
        f.write('crontab_dir = "%s"\n' % env.path('crontabs'))
        f.write('atjobs_dir = "%s"\n' % env.path('atjobs'))
    with open(env.path('login.defs'), 'w') as f:
        f.write('UID_MIN\t\t1000\nUID_MAX\t\t60000\nGID_MIN\t\t1000\nGID_MAX\t\t60000\n')
        f.write('USERGROUPS_ENAB yes\nCREATE_HOME no\n')
    with open(env.path('useradd'), 'w') as f:
        f.write('# useradd defaults\nSHELL=/bin/bash\nGROUP=100\nHOME=%s\n# SKEL=/etc/skel\n' % env.path('home'))
    with open(env.path('nslcd.conf'), 'w') as f:
        f.write('uid nslcd\ngid nslcd\nuri ldap://ldap.example.com\nbase dc=example,dc=com\n')
        f.write('base passwd %s\nbase group %s\n' % (USER_BASE, GROUP_BASE))
    with open(env.path('krb5.conf'), 'w') as f:
        f.write('[libdefaults]\n    default_realm = EXAMPLE.COM\n\n[realms]\n')
        f.write('    EXAMPLE.COM = {\n        kdc = kdc.example.com\n    }\n')

    monkeypatch.setattr(accounts, 'CONFIG_FILE', env.path('ldapusers.cf'))
    monkeypatch.setattr(accounts, 'LOGINDEFS_FILE', env.path('login.defs'))
    monkeypatch.setattr(accounts, 'USERADD_FILE', env.path('useradd'))
    monkeypatch.setattr(accounts, 'NSLCD_FILE', env.path('nslcd.conf'))
    monkeypatch.setattr(accounts, 'KRB5_FILE', env.path('krb5.conf'))
    monkeypatch.setattr(accounts, 'cfg', {})

    class FakeSession(object):
        def __init__(self, settings, kadmin=False):
            self.settings = settings
            self.ldap = env.connection
            self.krb = env.kadmin if kadmin else None
            self.closed = False

        def __enter__(self):
            env.sessions.append(self)
            return self

        def __exit__(self, exc_type, exc_value, traceback):
            self.closed = True
            return False

    monkeypatch.setattr(accounts, 'Session', FakeSession)
    monkeypatch.setattr(os, 'geteuid', lambda: 0)

    # keep the local NSS databases out of it
    monkeypatch.setattr(accounts, 'nss_user', lambda name: None)
    monkeypatch.setattr(accounts, 'nss_uid', lambda uid: None)
    monkeypatch.setattr(accounts, 'nss_group', lambda group: None)
    monkeypatch.setattr(ids, 'local_uids', lambda: set())
    monkeypatch.setattr(ids, 'local_gids', lambda: set())

    monkeypatch.setattr(ops, 'open_log', lambda program: None)
    monkeypatch.setattr(ops, 'audit', lambda message, *args: env.audits.append(message % args))
    monkeypatch.setattr(ops, 'report_failure', lambda message, *args: None)

    env.add_group('users', 100)
    return env
