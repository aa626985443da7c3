"""
Run the ClusterPodPlacementConfig reconcile loop
"""
# Standard
from typing import List, Optional
import argparse
import os
import signal

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config, watch_manager
from ..controller import ClusterPodPlacementConfigController
from ..deploy_manager import DryRunDeployManager
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunOperatorCmd(CmdBase):
    __doc__ = __doc__

    name = "run"

    ## Interface ##

    def add_args(self, group: argparse._ArgumentGroup):
        group.add_argument(
            "--cr",
            "-c",
            default=None,
            help="(dry run) A ClusterPodPlacementConfig yaml to apply directly",
        )
        group.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )

    def cmd(self, args: argparse.Namespace):
        # Validate args
        assert args.cr is None or (
            config.dry_run and os.path.isfile(args.cr)
        ), "Can only specify --cr with dry run and it must point to a valid file"
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"

        # Parse pre-populated resources if needed
        resources = self._parse_resource_dir(args.resource_dir)

        # Create the watch manager
        deploy_manager = self._setup_watches(resources)

        # Register the signal handler to stop the watches
        def do_stop(*_, **__):  # pragma: no cover
            watch_manager.stop_all()

        signal.signal(signal.SIGINT, do_stop)
        signal.signal(signal.SIGTERM, do_stop)

        # Run the watch manager
        log.info("Starting Watches")
        watch_manager.start_all()

        # If given, apply the CR directly
        if args.cr:
            log.info("Applying CR [%s]", args.cr)
            with open(args.cr, encoding="utf-8") as handle:
                cr_manifest = yaml.safe_load(handle)
                log.debug3(cr_manifest)
                deploy_manager.deploy([cr_manifest], manage_owner_references=False)

        # All done!
        log.info("SHUTTING DOWN")

    ## Impl ##

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]):
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            resource for resource in yaml.safe_load_all(handle)
                            if resource
                        )
        return all_resources

    @staticmethod
    def _setup_watches(resources: List[dict]) -> Optional[DryRunDeployManager]:
        """Set up the watch for the controller. If in dry run mode, the
        DryRunDeployManager will be returned.
        """
        if config.dry_run:
            log.info("Running DRY RUN")
            deploy_manager = DryRunDeployManager(resources=resources)
            watch_manager.DryRunWatchManager(
                controller_type=ClusterPodPlacementConfigController,
                deploy_manager=deploy_manager,
            )
            return deploy_manager

        log.info("Running Python Operator")
        watch_manager.PythonWatchManager(
            controller_type=ClusterPodPlacementConfigController
        )
        return None
