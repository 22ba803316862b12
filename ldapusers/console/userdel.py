"""
userdel: delete a user from the directory and the KDC
"""
import logging
import subprocess

from ldapusers import accounts, homes, ops
from ldapusers.conf import login_defs_value
from ldapusers.console.main import Command
from ldapusers.excep import ToolError, E_NOTFOUND, E_IN_USE
from ldapusers.krb import NoSuchPrincipal

logger = logging.getLogger(__name__)


class UserDel(Command):
    command_name = 'userdel'
    usage = '%prog [options] LOGIN'
    unsupported = [
        ('-R', '--root', True),
        ('-Z', '--selinux-user', False),
    ]

    @classmethod
    def add_options(cls, parser):
        parser.add_option('-f', '--force', dest='force', action='store_true', default=False,
            help='force removal of the user even when logged in, and of files not owned by the user')
        parser.add_option('-r', '--remove', dest='remove', action='store_true', default=False,
            help='remove home directory, mail spool, crontab and at jobs')

    def validate_options(self):
        if len(self.args) != 1:
            self.usage_error('exactly one LOGIN must be given')

    def run(self):
        accounts.require_root()
        accounts.configure()
        login = self.args[0]
        defs = accounts.login_defs()
        settings = accounts.resolve_settings(self.options)

        with accounts.Session(settings, kadmin=True) as session:
            ld = session.ldap

            user = ld.user_lookup(login)
            if user is None:
                raise ToolError("user '%s' does not exist" % login, E_NOTFOUND)
            uid = int(user['uidNumber'][0])
            gid = int(user['gidNumber'][0])
            home = user.get('homeDirectory', [None])[0]

            processes = homes.user_processes(uid)
            if processes and not self.options.force:
                raise ToolError('user %s is currently used by process %d' % (login, processes[0]), E_IN_USE)

            self.run_userdel_cmd(defs, login)

            for group in ld.groups_of_member(login):
                ld.group_remove_member(group, login)
                ops.audit("delete '%s' from group '%s'", login, group)

            ld.user_delete(login)
            ops.audit("delete user '%s'", login)

            self.remove_user_group(ld, login, gid)

            principal = settings.principal_name(login)
            try:
                session.krb.delete_principal(principal)
                ops.audit("delete principal '%s'", principal)
            except NoSuchPrincipal as e:
                logger.warning('%s', e)

        if self.options.remove:
            cfg = accounts.cfg
            homes.remove_mail_spool(cfg['mail_spool_dir'], login)
            homes.remove_crontab(cfg['crontab_dir'], login)
            for job in homes.remove_at_jobs(cfg['atjobs_dir'], uid):
                logger.debug('removed at job %s', job)
            if homes.remove_home(home, uid, self.options.force):
                ops.audit("remove home directory '%s' of user '%s'", home, login)


    def remove_user_group(self, ld, login, gid):
        """
        Deletes the user private group: the group named after the user with
        the user's GID, unless somebody else still uses it.
        """

        group = ld.group_lookup(login)
        if not group or int(group['gidNumber'][0]) != gid:
            return

        members = [member for member in group.get('memberUid', []) if member != login]
        if members:
            logger.warning('group %s not removed because it has other members.', login)
            return

        users = [user for user in ld.users_with_gid(gid) if user != login]
        if users:
            logger.warning('group %s not removed because it is the primary group of user %s.', login, users[0])
            return

        ld.group_delete(login)
        ops.audit("removed group '%s' owned by '%s'", login, login)


    def run_userdel_cmd(self, defs, login):
        """Runs USERDEL_CMD from login.defs, which removes jobs the tools don't know about."""

        command = login_defs_value(defs, 'USERDEL_CMD')
        if not command:
            return
        try:
            status = subprocess.call([command, login])
        except OSError as e:
            logger.warning('cannot run %s: %s', command, e)
            return
        if status:
            logger.warning('%s returned with status %d', command, status)
