#!/usr/bin/env python3
"""
Swarm Updater
Keeps Docker Swarm services on the newest image published under their tag:
probes the registry, updates each service, rolls back failures on request
and trims superseded local images.
"""

import argparse
import logging
import os
import sys
import time
from dataclasses import replace
from typing import Dict, Optional

from docker.errors import DockerException

from swarm_core import registry_utils as ru
from swarm_core.capability_utils import detect_capabilities
from swarm_core.cleanup_utils import clean_old_images
from swarm_core.config_utils import (
    DEFAULT_ENV_FILE,
    UpdaterConfig,
    load_config,
    load_dotenv_file,
)
from swarm_core.errors import ConfigError, ControlPlaneError, RegistryLoginError, UpdaterError
from swarm_core.logging_utils import setup_logging
from swarm_core.metrics_utils import Metrics, init_metrics
from swarm_core.models import Capabilities, UpdateOutcome
from swarm_core.notify_utils import Notifier
from swarm_core.swarm_utils import SwarmClient
from swarm_core.update_utils import execute_update, probe_image, strip_digest


class SwarmUpdater:
    """Reconciles Swarm services with the latest image for their tag."""

    def __init__(
        self,
        config: UpdaterConfig,
        client=None,
        notifier: Optional[Notifier] = None,
        metrics: Optional[Metrics] = None,
    ):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.client = client if client is not None else SwarmClient.from_env(config.docker_config_root)
        self.notifier = notifier if notifier is not None else Notifier(config.notify_url, config.hostname)
        self.metrics = metrics if metrics is not None else Metrics()
        self.capabilities: Optional[Capabilities] = None

    def _progress(self, message: str) -> None:
        self.logger.log(logging.INFO if self.config.verbose else logging.DEBUG, message)

    def detect_capabilities(self) -> Capabilities:
        """Read the engine version; ControlPlaneError here is fatal."""
        caps = detect_capabilities(self.client.get_version(), self.config)
        if self.capabilities is not None and caps != self.capabilities:
            self.logger.info("Engine capabilities changed since the last pass")
        self.capabilities = caps
        return caps

    def authenticate(self) -> int:
        return ru.login_all(self.client, self.config)

    def reconcile_service(self, name: str, caps: Capabilities) -> UpdateOutcome:
        service = self.client.inspect_service(name)
        image = probe_image(self.client, service, caps)
        if image is None:
            missing = strip_digest(service.image)
            self.logger.error(f"Error updating service {name}! Image {missing} does not exist or it is not available")
            self.metrics.inc('unavailable')
            self.notifier.service_failed(name, missing, 'image does not exist or is not available')
            return UpdateOutcome.UNAVAILABLE

        self._progress(f"Trying to update service {name} with image {image}")
        outcome = execute_update(self.client, service, image, caps, self.config, self.notifier, self.metrics)

        if outcome is UpdateOutcome.UPDATED and self.config.image_autoclean_limit is not None:
            clean_old_images(self.client, image, self.config.image_autoclean_limit, self.metrics)
        return outcome

    def reconcile(self) -> Dict[str, UpdateOutcome]:
        """Run one pass over every selected service.

        Engine and login failures propagate; anything that goes wrong
        while handling a single service is logged and the pass continues.
        """
        caps = self.detect_capabilities()
        self.authenticate()

        outcomes: Dict[str, UpdateOutcome] = {}
        names = self.client.list_services(self.config.service_filter)
        self._progress(f"Checking {len(names)} services for updates")
        for name in names:
            if name in self.config.ignore_services:
                self.logger.info(f"Service {name}: ignored, skipping")
                outcomes[name] = UpdateOutcome.SKIPPED
                continue
            try:
                outcome = self.reconcile_service(name, caps)
            except (UpdaterError, DockerException) as e:
                self.logger.error(f"Error processing service {name}: {e}")
                self.metrics.inc('failures')
                self.notifier.service_failed(name, None, str(e))
                outcome = UpdateOutcome.FAILED
            outcomes[name] = outcome
            self.logger.info(f"Service {name}: {outcome.value}")
        return outcomes

    def run(self):
        """Main execution loop."""
        self.logger.info("Swarm updater starting...")
        self.logger.info(f"Service filter: {self.config.service_filter or 'none'}")
        if self.config.ignore_services:
            self.logger.info(f"Ignored services: {', '.join(sorted(self.config.ignore_services))}")
        try:
            while True:
                self.reconcile()
                if self.config.run_once:
                    self.logger.info("Single pass complete, exiting")
                    self.notifier.flush()
                    return
                self.logger.info(f"Pass complete. Sleeping for {self.config.sleep_seconds:g} seconds...")
                time.sleep(self.config.sleep_seconds)
        except KeyboardInterrupt:
            self.logger.info("Received interrupt signal. Shutting down...")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Docker Swarm service updater')
    parser.add_argument('--env-file', dest='env_file', default=os.getenv('ENV_FILE', DEFAULT_ENV_FILE),
                        help='Optional .env file loaded before reading the environment')
    parser.add_argument('--once', action='store_true', help='Run a single pass and exit')
    parser.add_argument('--check', action='store_true',
                        help='Check engine connectivity and registry logins, then exit')
    args = parser.parse_args()

    load_dotenv_file(args.env_file)
    logger = setup_logging(os.getenv('LOG_LEVEL', 'INFO'), os.getenv('LOG_FORMAT', 'plain'), os.getenv('LOG_DIR'))
    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    if args.once:
        config = replace(config, run_once=True)

    try:
        updater = SwarmUpdater(
            config,
            metrics=init_metrics(os.getenv('METRICS_PORT'), os.getenv('METRICS_ADDR', '0.0.0.0')),
        )
        if args.check:
            updater.detect_capabilities()
            logins = updater.authenticate()
            print(f'Docker connectivity: OK ({updater.client.get_version()})')
            print(f'Registry logins: OK ({logins})')
            sys.exit(0)
        updater.run()
    except (ControlPlaneError, RegistryLoginError) as e:
        logger.error(f"Fatal: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
