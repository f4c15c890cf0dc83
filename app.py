#!/usr/bin/env python3
"""CDK app entry point.

Every setting comes from CDK context, either the ``context`` section of
cdk.json or ``cdk deploy -c key=value``, e.g.::

    cdk deploy -c stackName=MyStack -c region=eu-west-1 -c accessMode=ssm
"""
import logging
import os

import aws_cdk as cdk

from minimalist_cdk_template.config import CONTEXT_KEYS, resolve_config
from minimalist_cdk_template.home_ip import expand_ssh_cidr
from minimalist_cdk_template.minimalist_cdk_template_stack import MinimalistCdkTemplateStack

logger = logging.getLogger(__name__)


def build_app(app: cdk.App) -> MinimalistCdkTemplateStack:
    context = {key: app.node.try_get_context(key) for key in CONTEXT_KEYS}
    config = resolve_config(expand_ssh_cidr(context))

    logger.info("Synthesizing %s for %s (database=%s, access=%s)",
                config.stack_name, config.region, config.enable_database, config.access_mode)

    return MinimalistCdkTemplateStack(app, config.stack_name, config=config, env=config.env)


def main() -> None:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    app = cdk.App()
    build_app(app)
    app.synth()


if __name__ == "__main__":
    main()
