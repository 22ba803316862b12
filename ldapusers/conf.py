"""
Configuration Utility Module

This module contains functions to load and verify the configuration files
the tools depend on. Two kinds of files are handled:

The tool configuration file, a very simple "key = value" format:

    include /path/to/other.cf

    # quoted and unquoted strings
    principal = "ldapusers/admin"
    keytab = /etc/ldapusers/admin.keytab

    # this value is an integer
    arbitrary_number = 2

    # these two lines are treated as one
    long line = first line \\
                second line

And the system files owned by other packages, each read in its own
format: /etc/default/useradd (shell variables), /etc/login.defs
(whitespace separated), /etc/nslcd.conf (keywords) and /etc/krb5.conf
(profile sections). Missing system files are read as empty.
"""
import os
import re


class ConfigurationException(Exception):
    """Exception class for incomplete and incorrect configurations."""


def read(filename, included=None):
    """Function to read a configuration file into a dictionary."""

    if not included:
        included = []
    if filename in included:
        return {}
    included.append(filename)

    try:
        conffile = open(filename)
    except IOError:
        raise ConfigurationException('unable to read configuration file: "%s"' % filename)

    options = {}

    with conffile:
        while True:

            line = conffile.readline()
            if line == '':
                break

            # remove comments
            if '#' in line:
                line = line[:line.find('#')] + '\n'

            # combine lines when the newline is escaped with \
            while len(line) > 1 and line[-2] == '\\':
                line = line[:-2] + line[-1]
                next_line = conffile.readline()
                line += next_line
                if next_line == '':
                    break

            line = line.strip()

            # process include statements
            if line.startswith('include') and len(line) > 7 and line[7].isspace():
                options.update(read(line[8:].strip(), included))
                continue

            # split 'key = value' into key and value and strip results
            pair = [part.strip() for part in line.split('=', 1)]

            # found key and value
            if len(pair) == 2:
                key, val = pair

                # found quoted string?
                if len(val) > 1 and val[0] == val[-1] == '"':
                    val = val[1:-1]

                # unquoted, found number?
                else:
                    try:
                        if '.' in val:
                            val = float(val)
                        else:
                            val = int(val)
                    except ValueError:
                        pass

                options[key] = val

            # found only key, value = None
            elif len(pair[0]) > 1:
                options[pair[0]] = None

    return options


def check_string_fields(filename, field_list, cfg):
    """Function to verify that fields are strings."""

    for field in field_list:
        if field not in cfg or type(cfg[field]) is not str:
            raise ConfigurationException('expected string value for option "%s" in "%s"' % (field, filename))


def check_integer_fields(filename, field_list, cfg):
    """Function to verify that fields are integers."""

    for field in field_list:
        if field not in cfg or type(cfg[field]) is not int:
            raise ConfigurationException('expected numeric value for option "%s" in "%s"' % (field, filename))



### System Files ###

def _lines(filename):
    """Yields the stripped, non-comment lines of a file. Nothing if it is missing."""

    try:
        conffile = open(filename)
    except IOError:
        return
    with conffile:
        for line in conffile:
            line = line.strip()
            if line and not line.startswith('#'):
                yield line


def _unquote(val):
    if len(val) > 1 and val[0] == val[-1] and val[0] in '"\'':
        return val[1:-1]
    return val


def read_shell_vars(filename):
    """
    Reads a file of shell variable assignments, like /etc/default/useradd.

    Example: read_shell_vars('/etc/default/useradd') -> {
                 'SHELL': '/bin/bash',
                 'SKEL': '/etc/skel',
             }
    """

    options = {}
    for line in _lines(filename):
        if '=' not in line:
            continue
        key, val = line.split('=', 1)
        options[key.strip()] = _unquote(val.strip())
    return options


def read_login_defs(filename):
    """
    Reads /etc/login.defs. Each line holds a key and a value separated by
    whitespace; values are kept as strings.

    Example: read_login_defs('/etc/login.defs') -> {
                 'UID_MIN': '1000',
                 'USERGROUPS_ENAB': 'yes',
             }
    """

    options = {}
    for line in _lines(filename):
        pair = line.split(None, 1)
        if len(pair) == 2:
            options[pair[0]] = _unquote(pair[1].strip())
        else:
            options[pair[0]] = ''
    return options


def read_nslcd(filename):
    """
    Reads /etc/nslcd.conf.

    Keywords map to their value. The exceptions are 'uri', which may
    appear more than once and maps to a list, and 'base', whose map-specific
    form (base passwd ou=People,...) is stored under 'base passwd'.
    """

    options = {'uri': []}
    for line in _lines(filename):
        pair = line.split(None, 1)
        if len(pair) < 2:
            continue
        key, val = pair[0], pair[1].strip()
        if key == 'uri':
            options['uri'].extend(val.split())
        elif key == 'base':
            words = val.split(None, 1)
            if len(words) == 2 and '=' not in words[0]:
                options['base %s' % words[0]] = words[1].strip()
            else:
                options['base'] = val
        else:
            options[key] = val
    return options


def read_krb5(filename):
    """
    Reads a Kerberos profile such as /etc/krb5.conf into a dictionary of
    sections. Relations nested in braces (the per-realm blocks) become
    dictionaries keyed by the realm; relations that repeat keep their first
    value.

    Example: read_krb5('/etc/krb5.conf') -> {
                 'libdefaults': { 'default_realm': 'EXAMPLE.COM' },
                 'realms': { 'EXAMPLE.COM': { 'kdc': 'kdc.example.com' } },
             }
    """

    sections = {}
    section = None
    stack = []
    for line in _lines(filename):
        if line.startswith(';'):
            continue

        # section header
        match = re.match(r'^\[(.+)\]$', line)
        if match:
            section = sections.setdefault(match.group(1).strip(), {})
            stack = [section]
            continue
        if section is None:
            continue

        # end of a nested block
        if line.startswith('}'):
            if len(stack) > 1:
                stack.pop()
            continue

        if '=' not in line:
            continue
        key, val = [part.strip() for part in line.split('=', 1)]

        # start of a nested block
        if val == '{':
            block = stack[-1].setdefault(key, {})
            stack.append(block)
            continue

        stack[-1].setdefault(key, _unquote(val))
    return sections


def update_shell_vars(filename, changes):
    """
    Rewrites shell variable assignments in place. A commented assignment
    (#SHELL=/bin/sh) is uncommented when it is replaced; keys with no
    assignment in the file are appended.

    Parameters:
        filename - the file to rewrite, e.g. /etc/default/useradd
        changes  - dictionary of keys and their new values
    """

    try:
        with open(filename) as conffile:
            lines = conffile.read().splitlines()
    except IOError:
        lines = []

    pending = dict(changes)
    for index, line in enumerate(lines):
        match = re.match(r'^\s*#?\s*([A-Za-z_][A-Za-z0-9_]*)\s*=', line)
        if match and match.group(1) in pending:
            key = match.group(1)
            lines[index] = '%s=%s' % (key, pending.pop(key))

    for key in sorted(pending):
        lines.append('%s=%s' % (key, pending[key]))

    tmpname = '%s.new' % filename
    with open(tmpname, 'w') as conffile:
        conffile.write('\n'.join(lines) + '\n')
    if os.path.exists(filename):
        os.chmod(tmpname, os.stat(filename).st_mode & 0o7777)
    os.rename(tmpname, filename)


def login_defs_value(defs, key, default=None, convert=str):
    """
    Looks up a typed value in /etc/login.defs contents.

    Parameters:
        defs    - dictionary as returned by read_login_defs()
        key     - the variable to look up
        default - returned when the key is absent or malformed
        convert - int, str or bool; numbers may be octal (0077) or hex

    Example: login_defs_value(defs, 'UID_MIN', 1000, int) -> 1000
    """

    if key not in defs:
        return default
    val = defs[key]
    if convert is bool:
        return val.lower() == 'yes'
    if convert is int:
        try:
            if val.startswith(('0x', '0X')):
                return int(val, 16)
            if len(val) > 1 and val.startswith('0'):
                return int(val, 8)
            return int(val)
        except ValueError:
            return default
    return convert(val)
