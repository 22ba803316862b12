"""
Kerberos Backend Interface

This module is intended to be a thin wrapper around Kerberos operations.

A Kerberos principal is the second half of an account managed by these
tools. The principal stores the user's password and is used for all
authentication; the LDAP entry only describes the account.

Two things are needed from Kerberos. The tools authenticate with a
service keytab to obtain credentials for the SASL/GSSAPI bind to LDAP
(see Credentials), and they create and delete principals on the master
server (see KrbConnection). There are no maintained Python bindings to
libkadm5, so the latter communicates with the kadmin CLI interface via a
pseudo-terminal and a pipe.
"""
import logging
import os
import shutil
import subprocess
import tempfile

from ldapusers import ipc

logger = logging.getLogger(__name__)

KINIT = '/usr/bin/kinit'
KDESTROY = '/usr/bin/kdestroy'
KADMIN = '/usr/bin/kadmin'


class KrbException(Exception):
    """Exception class for all Kerberos-related errors."""
    pass


class Credentials(object):
    """
    Kerberos credentials obtained from a keytab into a private credential
    cache. While the credentials are held, KRB5CCNAME points at the cache
    so that the GSSAPI library used by the LDAP bind picks them up.

    Example:
        creds = Credentials('ldapusers/admin@EXAMPLE.COM', '/etc/ldapusers/admin.keytab')
        creds.obtain()
        ...
        creds.destroy()
    """

    def __init__(self, principal, keytab, kinit=KINIT, kdestroy=KDESTROY):
        self.principal = principal
        self.keytab = keytab
        self.kinit = kinit
        self.kdestroy = kdestroy
        self.ccache = None
        self.tmpdir = None
        self.saved_ccname = None


    def obtain(self):
        """Run kinit with the keytab and export the new cache."""

        # check keytab
        if not os.access(self.keytab, os.R_OK):
            raise KrbException("cannot access Kerberos keytab: %s" % self.keytab)

        self.tmpdir = tempfile.mkdtemp(prefix='ldapusers-')
        self.ccache = 'FILE:%s' % os.path.join(self.tmpdir, 'ccache')

        kinit_args = [self.kinit, '-k', '-t', self.keytab, '-c', self.ccache, self.principal]
        logger.debug('running %s', ' '.join(kinit_args))
        try:
            kinit = subprocess.Popen(kinit_args, stdin=subprocess.PIPE,
                stdout=subprocess.PIPE, stderr=subprocess.PIPE, universal_newlines=True)
            out, err = kinit.communicate()
        except OSError as e:
            self._cleanup()
            raise KrbException("unable to run %s: %s" % (self.kinit, e))

        if kinit.returncode:
            self._cleanup()
            raise KrbException("kinit failed for %s: %s" % (self.principal, (out + err).strip()))

        self.saved_ccname = os.environ.get('KRB5CCNAME')
        os.environ['KRB5CCNAME'] = self.ccache


    def destroy(self):
        """Destroy the credential cache and restore the environment."""

        if not self.ccache:
            return

        try:
            subprocess.call([self.kdestroy, '-c', self.ccache],
                stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.warning('unable to run %s: %s', self.kdestroy, e)

        if self.saved_ccname is None:
            os.environ.pop('KRB5CCNAME', None)
        else:
            os.environ['KRB5CCNAME'] = self.saved_ccname
        self._cleanup()


    def held(self):
        return self.ccache is not None


    def _cleanup(self):
        if self.tmpdir:
            shutil.rmtree(self.tmpdir, ignore_errors=True)
        self.tmpdir = None
        self.ccache = None
        self.saved_ccname = None


class KrbConnection(object):
    """
    Connection to the Kerberos master server (kadmind). All Kerberos
    principal updates are made via this class.

    Exceptions: (all methods)
        KrbException - on query/update failure

    Example:
        connection = KrbConnection()
        connection.connect(...)

        # make queries and updates, e.g.
        connection.delete_principal("jdoe")

        connection.disconnect()
    """

    def __init__(self, kadmin=KADMIN):
        self.kadmin = kadmin
        self.pid = None
        self.kadm_out = None
        self.kadm_in = None
        self.pending_password = None


    def connect(self, principal, keytab, realm=None):
        """
        Establishes the connection to the Kerberos master server.

        Parameters:
            principal - the Kerberos principal to authenticate as
            keytab    - keytab filename for authentication
            realm     - realm to administer, if not the default

        Example: connection.connect('ldapusers/admin@EXAMPLE.COM', '/etc/ldapusers/admin.keytab')
        """

        # check keytab
        if not os.access(keytab, os.R_OK):
            raise KrbException("cannot access Kerberos keytab: %s" % keytab)

        # the prompt only reads "kadmin:" when argv[0] is "kadmin"
        kadmin_args = ['kadmin', '-p', principal, '-k', '-t', keytab]
        if realm:
            kadmin_args += ['-r', realm]

        logger.debug('starting %s', ' '.join(kadmin_args))
        self.pid, self.kadm_out, self.kadm_in = ipc.popeni(self.kadmin, kadmin_args)

        # read welcome messages
        welcome = self.read_result()

        # sanity checks on welcome messages
        for line in welcome:

            # ignore auth message
            if line.startswith("Authenticating"):
                continue

            # ignore log file message
            elif "kadmin.log" in line:
                continue

            # error message?
            else:
                self.disconnect()
                raise KrbException("unexpected kadmin output: " + line)


    def disconnect(self):
        """Close the connection to the master server."""

        if self.pid:

            # close the pipe connected to kadmin's standard input
            self.kadm_in.close()

            # close the master pty connected to kadmin's stdout
            try:
                self.kadm_out.close()
            except OSError:
                pass

            # wait for kadmin to terminate
            os.waitpid(self.pid, 0)
            self.pid = None


    def connected(self):
        """Determine whether the connection has been established."""

        return self.pid is not None



    ### Helper Methods ###

    def read_result(self):
        """
        Helper function to read output of kadmin until it
        prompts for input.

        Returns: a list of lines returned by kadmin
        """

        result = []
        lines = []

        # the kadmin prompt that signals the end output
        prompt = "kadmin:"

        # the timeout starts small and grows up to timeout_maximum
        # while read() keeps returning nothing
        timeout = 0.01
        timeout_increment = 0.10
        timeout_maximum = 1.00

        # input loop: read from kadmin until the kadmin prompt
        buf = ''
        while True:

            # attempt to read any available data
            data = self.kadm_out.read(block=False, timeout=timeout)
            buf += data

            # nothing was read
            if data == '':

                # so wait longer for data next time
                if timeout < timeout_maximum:
                    timeout += timeout_increment
                    continue

                # give up after too much waiting
                status = os.waitpid(self.pid, os.WNOHANG)
                if status[0] == 0:
                    raise KrbException("timeout while reading response from kadmin")
                else:
                    self.pid = None
                    raise KrbException("kadmin died while reading response:\n%s\n%s" % ("\n".join(lines), buf))

            # break into lines and save all but the final
            # line (which is incomplete) into result
            lines = buf.split("\n")
            buf = lines[-1]
            for line in lines[:-1]:
                line = line.strip()
                if line:
                    result.append(line)

            # if the incomplete line in the buffer is the kadmin prompt,
            # then the result is complete and may be returned
            if buf.strip() == prompt:
                break

            # password prompts end without a newline as well
            if buf.strip().endswith(':') and 'password' in buf.lower():
                result.append(buf.strip())
                buf = ''
                self._answer_prompt()

        return result


    def _answer_prompt(self):
        """Answers a password prompt; kadmin reads the answer from its standard input."""

        if not self.pending_password:
            raise KrbException("kadmin asked for a password unexpectedly")
        self.kadm_in.write(self.pending_password + "\n")
        self.kadm_in.flush()


    def execute(self, command):
        """
        Helper function to execute a kadmin command.

        Parameters:
            command - command string to pass on to kadmin

        Returns: a list of lines output by the command
        """

        # there should be no remaining output from the previous
        # command. if there is then something is broken.
        stale_output = self.kadm_out.read(block=False, timeout=0)
        if stale_output.strip() != '':
            raise KrbException("unexpected kadmin output: " + stale_output)

        logger.debug('kadmin: %s', command.split(' -pw ')[0])

        # send the command to kadmin
        self.kadm_in.write(command + "\n")
        self.kadm_in.flush()

        return self.read_result()


    @staticmethod
    def check_errors(command, output):
        """Raises KrbException for the first error message of a command."""

        for line in output:
            if line.startswith(command + ":") or line.startswith("kadmin:"):
                raise KrbException(line)



    ### Commands ###

    def list_policies(self):
        """
        Retrieve the names of the password policies.

        Example: connection.list_policies() -> [ "default", "users" ]
        """

        output = self.execute("list_policies")
        self.check_errors("list_policies", output)
        return output


    def get_principal(self, principal):
        """
        Retrieve principal details.

        Returns: a dictionary of principal attributes, None if the
                 principal does not exist

        Example: connection.get_principal("jdoe@EXAMPLE.COM") -> {
                     "Principal": "jdoe@EXAMPLE.COM",
                     "Policy": "[none]",
                     ...
                 }
        """

        output = self.execute('get_principal "%s"' % principal)

        if not output:
            raise KrbException("get_principal returned nothing")

        # principal does not exist => None
        if output[0].startswith("get_principal: ") and "does not exist" in output[0]:
            return None
        self.check_errors("get_principal", output)

        principal_attributes = {}

        # attributes that will not be returned
        ignore_attributes = ['Key']

        # split output into a dictionary of attributes
        for line in output:
            if ':' not in line:
                continue
            key, value = line.split(":", 1)
            if key not in ignore_attributes:
                principal_attributes[key] = value.strip()

        return principal_attributes


    def add_principal(self, principal, password, policy=None, expire=None,
            attributes=('+requires_preauth', '+needchange')):
        """
        Create a new principal.

        Parameters:
            principal  - the name of the principal
            password   - the principal's initial password
            policy     - password policy to apply
            expire     - expiration time in any format kadmin accepts
            attributes - principal flags

        Example: connection.add_principal("jdoe@EXAMPLE.COM", "opensesame",
                     policy="users", expire="2030-06-30 23:59:59")
        """

        if not password:
            raise KrbException("empty passwords are not allowed")

        options = list(attributes)
        if policy:
            options.append('-policy "%s"' % policy)
        if expire:
            options.append('-expire "%s"' % expire)

        command = 'add_principal %s' % ' '.join(options)

        # kadmin has no escaping, so passwords that contain double
        # quotes are given at the password prompts instead
        if '"' not in password:
            command += ' -pw "%s" "%s"' % (password, principal)
            output = self.execute(command)
        else:
            self.pending_password = password
            try:
                output = self.execute('%s "%s"' % (command, principal))
            finally:
                self.pending_password = None

        # verify output
        created = False
        for line in output:

            # ignore notices and warnings
            if line.startswith("NOTICE:") or line.startswith("WARNING:"):
                continue

            # ignore prompts
            elif line.startswith("Enter password") or line.startswith("Re-enter password"):
                continue

            # record whether success message was encountered
            elif line.startswith("Principal") and "created." in line:
                created = True

            # error messages
            elif line.startswith("add_principal:") or line.startswith("kadmin:"):
                if "already exists" in line:
                    raise KrbException("principal %s already exists" % principal)
                raise KrbException(line)

            else:
                raise KrbException("unexpected add_principal output: " + line)

        if not created:
            raise KrbException("kadmin did not acknowledge principal creation")


    def delete_principal(self, principal):
        """
        Delete a principal.

        Example: connection.delete_principal("jdoe@EXAMPLE.COM")
        """

        output = self.execute('delete_principal -force "%s"' % principal)

        # verify output
        deleted = False
        for line in output:

            # ignore reminder
            if line.startswith("Make sure that"):
                continue

            # record whether success message was encountered
            elif line.startswith("Principal") and "deleted." in line:
                deleted = True

            # error messages
            elif line.startswith("delete_principal:") or line.startswith("kadmin:"):
                if "does not exist" in line:
                    raise NoSuchPrincipal(principal)
                raise KrbException(line)

            else:
                raise KrbException("unexpected delete_principal output: " + line)

        if not deleted:
            raise KrbException("did not receive principal deleted")


class NoSuchPrincipal(KrbException):
    """Exception class for nonexistent principals."""
    def __init__(self, principal):
        KrbException.__init__(self, "principal %s does not exist" % principal)
        self.principal = principal
