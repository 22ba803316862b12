import os

import pytest

from ldapusers import conf


def write(path, text):
    with open(str(path), 'w') as f:
        f.write(text)
    return str(path)


def test_read(tmp_path):
    other = write(tmp_path / 'other.cf', 'included = yes\nkeytab = /etc/other.keytab\n')
    filename = write(tmp_path / 'tools.cf', '\n'.join([
        '# a comment',
        'include %s' % other,
        'principal = "ldapusers/admin"  # trailing comment',
        'keytab = /etc/ldapusers/admin.keytab',
        'quoted = " yes"',
        'number = 2',
        'long line = first \\',
        '            second',
        'flag',
        '',
    ]))

    cfg = conf.read(filename)
    assert cfg['included'] == 'yes'
    assert cfg['principal'] == 'ldapusers/admin'
    assert cfg['keytab'] == '/etc/ldapusers/admin.keytab'
    assert cfg['quoted'] == ' yes'
    assert cfg['number'] == 2
    assert cfg['long line'].split() == ['first', 'second']
    assert 'flag' in cfg and cfg['flag'] is None


def test_read_include_loop(tmp_path):
    filename = str(tmp_path / 'loop.cf')
    write(filename, 'include %s\nkey = value\n' % filename)
    assert conf.read(filename) == {'key': 'value'}


def test_read_missing(tmp_path):
    with pytest.raises(conf.ConfigurationException):
        conf.read(str(tmp_path / 'missing.cf'))


def test_check_fields():
    cfg = {'keytab': '/etc/krb5.keytab', 'number': 3}
    conf.check_string_fields('tools.cf', ['keytab'], cfg)
    conf.check_integer_fields('tools.cf', ['number'], cfg)
    with pytest.raises(conf.ConfigurationException):
        conf.check_string_fields('tools.cf', ['number'], cfg)
    with pytest.raises(conf.ConfigurationException):
        conf.check_integer_fields('tools.cf', ['keytab'], cfg)


def test_read_shell_vars(tmp_path):
    filename = write(tmp_path / 'useradd', '\n'.join([
        '# Default values for useradd(8)',
        'SHELL=/bin/sh',
        '# GROUP=100',
        'HOME="/srv/home"',
        "SKEL='/etc/skel'",
        'CREATE_MAIL_SPOOL=no',
    ]))
    assert conf.read_shell_vars(filename) == {
        'SHELL': '/bin/sh',
        'HOME': '/srv/home',
        'SKEL': '/etc/skel',
        'CREATE_MAIL_SPOOL': 'no',
    }
    assert conf.read_shell_vars(str(tmp_path / 'missing')) == {}


def test_read_login_defs(tmp_path):
    filename = write(tmp_path / 'login.defs', '\n'.join([
        '#',
        'MAIL_DIR        /var/mail',
        'UID_MIN\t\t\t 1000',
        'UMASK\t\t022',
        'USERGROUPS_ENAB yes',
        'ENCRYPT_METHOD SHA512',
    ]))
    defs = conf.read_login_defs(filename)
    assert defs['MAIL_DIR'] == '/var/mail'
    assert defs['UID_MIN'] == '1000'
    assert defs['UMASK'] == '022'
    assert defs['USERGROUPS_ENAB'] == 'yes'


def test_login_defs_value():
    defs = {'UID_MIN': '500', 'UMASK': '077', 'MASK': '0x1f', 'USERGROUPS_ENAB': 'Yes', 'BAD': 'x'}
    assert conf.login_defs_value(defs, 'UID_MIN', 1000, int) == 500
    assert conf.login_defs_value(defs, 'UID_MAX', 60000, int) == 60000
    assert conf.login_defs_value(defs, 'UMASK', None, int) == 0o77
    assert conf.login_defs_value(defs, 'MASK', None, int) == 31
    assert conf.login_defs_value(defs, 'BAD', 7, int) == 7
    assert conf.login_defs_value(defs, 'USERGROUPS_ENAB', False, bool) is True
    assert conf.login_defs_value(defs, 'CREATE_HOME', False, bool) is False
    assert conf.login_defs_value(defs, 'UID_MIN') == '500'


def test_read_nslcd(tmp_path):
    filename = write(tmp_path / 'nslcd.conf', '\n'.join([
        'uid nslcd',
        'gid nslcd',
        'uri ldap://ldap1.example.com ldap://ldap2.example.com',
        'uri ldaps://ldap3.example.com',
        'base dc=example,dc=com',
        'base passwd ou=People,dc=example,dc=com',
        'base   group  ou=Group,dc=example,dc=com',
        'validnames /^[a-z][a-z0-9]*$/i',
    ]))
    nslcd = conf.read_nslcd(filename)
    assert nslcd['uri'] == ['ldap://ldap1.example.com', 'ldap://ldap2.example.com',
                            'ldaps://ldap3.example.com']
    assert nslcd['base'] == 'dc=example,dc=com'
    assert nslcd['base passwd'] == 'ou=People,dc=example,dc=com'
    assert nslcd['base group'] == 'ou=Group,dc=example,dc=com'
    assert nslcd['validnames'] == '/^[a-z][a-z0-9]*$/i'
    assert conf.read_nslcd(str(tmp_path / 'missing')) == {'uri': []}


def test_read_krb5(tmp_path):
    filename = write(tmp_path / 'krb5.conf', '\n'.join([
        '[libdefaults]',
        '    default_realm = EXAMPLE.COM',
        '    dns_lookup_kdc = false',
        '',
        '[realms]',
        '    EXAMPLE.COM = {',
        '        kdc = kdc1.example.com',
        '        kdc = kdc2.example.com',
        '        admin_server = kdc1.example.com',
        '    }',
        '    OTHER.ORG = {',
        '        kdc = kerberos.other.org',
        '    }',
        '',
        '[domain_realm]',
        '    .example.com = EXAMPLE.COM',
    ]))
    krb5 = conf.read_krb5(filename)
    assert krb5['libdefaults']['default_realm'] == 'EXAMPLE.COM'
    assert krb5['realms']['EXAMPLE.COM'] == {'kdc': 'kdc1.example.com', 'admin_server': 'kdc1.example.com'}
    assert krb5['realms']['OTHER.ORG'] == {'kdc': 'kerberos.other.org'}
    assert krb5['domain_realm']['.example.com'] == 'EXAMPLE.COM'


def test_update_shell_vars(tmp_path):
    filename = write(tmp_path / 'useradd', '# defaults\nSHELL=/bin/sh\n# HOME=/home\nSKEL=/etc/skel\n')
    os.chmod(filename, 0o640)

    conf.update_shell_vars(filename, {'SHELL': '/bin/bash', 'HOME': '/srv/home', 'INACTIVE': 30})

    with open(filename) as f:
        lines = f.read().splitlines()
    assert lines == ['# defaults', 'SHELL=/bin/bash', 'HOME=/srv/home', 'SKEL=/etc/skel', 'INACTIVE=30']
    assert os.stat(filename).st_mode & 0o777 == 0o640
    assert not os.path.exists(filename + '.new')
