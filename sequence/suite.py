"""
Suite factory - entry point for rule test suites.

    from sequence.suite import suite
    from sequence.deferred import all_

    async def test_read_is_denied_by_default():
        ctx = suite(rules)
        await all_(
            ctx.get("/").should_fail(),
            ctx.as_("bob").get("/").should_fail(),
        )

The driver defaults to the simulated one; set FIREBASE_TEST_DRIVER=live
(with FIREBASE_TEST_PROJECT_ID and FIREBASE_TEST_SECRET) to run the same
suite against a live database.
"""

import logging
from typing import Any, Optional

from config.settings import HarnessSettings, get_settings
from drivers import live, simulated
from sequence.context import Context, create

logger = logging.getLogger(__name__)


def create_driver(harness_settings: Optional[HarnessSettings] = None) -> Any:
    """Create the driver selected by the settings."""
    harness_settings = harness_settings or get_settings()

    if harness_settings.use_live_driver:
        logger.info(f"Using live driver on {harness_settings.live.PROJECT_ID}")
        return live.create(
            secret=harness_settings.live.SECRET,
            project_id=harness_settings.live.PROJECT_ID,
            base_url=harness_settings.live.BASE_URL,
        )

    logger.debug("Using simulated driver")
    return simulated.create()


def suite(rules: Any, driver: Any = None, harness_settings: Optional[HarnessSettings] = None) -> Context:
    """Create a root context for the rules."""
    if driver is None:
        driver = create_driver(harness_settings)
    return create(rules, driver)
