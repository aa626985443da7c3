"""
Serve the admission validators
"""
# Standard
import argparse

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import DryRunDeployManager, OpenshiftDeployManager
from ..webhook import create_app, run_server
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunWebhookCmd(CmdBase):
    __doc__ = __doc__

    name = "webhook"

    def cmd(self, args: argparse.Namespace):
        if config.dry_run:
            log.info("Serving admission webhooks against a DRY RUN cluster")
            deploy_manager = DryRunDeployManager()
        else:
            deploy_manager = OpenshiftDeployManager()
        run_server(create_app(deploy_manager))
