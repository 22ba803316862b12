"""
groupadd: create a new group in the directory
"""
import logging

from ldapusers import accounts, conf, ids, ops
from ldapusers.console.main import Command
from ldapusers.excep import InvalidArgument, ToolError, E_GRP_UPDATE, E_ID_IN_USE, E_NAME_IN_USE

logger = logging.getLogger(__name__)


class GroupAdd(Command):
    command_name = 'groupadd'
    usage = '%prog [options] GROUP'
    unsupported = [
        ('-p', '--password', True),
        ('-R', '--root', True),
    ]
    failure_status = E_GRP_UPDATE

    @classmethod
    def add_options(cls, parser):
        parser.add_option('-f', '--force', dest='force', action='store_true', default=False,
            help='exit successfully if the group already exists, and cancel -g if the GID is already used')
        parser.add_option('-g', '--gid', dest='gid', type='int', metavar='GID',
            help='use GID for the new group')
        parser.add_option('-K', '--key', dest='keys', action='append', metavar='KEY=VALUE',
            help='override /etc/login.defs defaults')
        parser.add_option('-o', '--non-unique', dest='non_unique', action='store_true', default=False,
            help='allow to create groups with duplicate (non-unique) GID')
        parser.add_option('-r', '--system', dest='system', action='store_true', default=False,
            help='create a system account')

    def validate_options(self):
        if len(self.args) != 1:
            self.usage_error('exactly one GROUP must be given')
        if self.options.non_unique and self.options.gid is None:
            self.usage_error('-o flag is only allowed with the -g flag')

    def run(self):
        accounts.require_root()
        accounts.configure()
        name = self.args[0]
        accounts.validate_name(name, conf.read_nslcd(accounts.NSLCD_FILE))
        if self.options.gid is not None and self.options.gid < 0:
            raise InvalidArgument('gid', self.options.gid, 'must not be negative')
        defs = accounts.login_defs(self.options.keys)
        settings = accounts.resolve_settings(self.options)

        with accounts.Session(settings) as session:
            ld = session.ldap

            if ld.group_lookup(name) or accounts.nss_group(name):
                if self.options.force:
                    logger.debug('group %s exists, nothing to do', name)
                    return
                raise ToolError("group '%s' already exists" % name, E_NAME_IN_USE)

            gid = self.options.gid
            if gid is not None and accounts.gid_in_use(ld, gid) and not self.options.non_unique:
                if not self.options.force:
                    raise ToolError("GID '%d' already exists" % gid, E_ID_IN_USE)
                gid = None
            if gid is None:
                gid = ids.new_gid(ld, defs, self.options.system)

            ld.group_add(name, gid)
            ops.audit('new group: name=%s, GID=%d', name, gid)
