"""
Startup validation utilities to check configuration before serving requests.

Checks the database environment, the numeric tunables and the optional API
token. Database connectivity is only checked when explicitly requested so that
the service can start (and report ``degraded`` on /healthz) while the
database is still coming up.
"""

import os
import sys
from typing import List

from eips_insight.utils.logger import logger


class StartupValidator:
    """Startup validation for the EIPs Insight lifecycle service."""

    def __init__(self, check_connectivity: bool = False):
        self.check_connectivity = check_connectivity
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_all(self) -> bool:
        """
        Run all validation checks.

        Returns:
            True if all critical checks pass, False otherwise.
        """
        logger.info("StartupValidator: Beginning system validation")

        # Critical validations (must pass)
        self._validate_database_config()
        self._validate_lifecycle_settings()

        # Non-critical validations (warnings only)
        self._validate_optional_config()

        self._report_results()

        return len(self.errors) == 0

    def _validate_database_config(self) -> None:
        """Validate database configuration and, optionally, connectivity."""
        from eips_insight.config.database_config import get_connection_string, validate_database_environment

        if not validate_database_environment():
            self.errors.append("Database configuration validation failed")
            return

        logger.info("StartupValidator: Event-log database target %s", get_connection_string())

        if not self.check_connectivity:
            return

        from eips_insight.exceptions import UpstreamUnavailableError
        from eips_insight.services.connection_pool import get_connection_pool

        try:
            pool = get_connection_pool()
            conn = pool.get_connection()
            pool.return_connection(conn)
            logger.info("StartupValidator: Database connectivity test passed")
        except UpstreamUnavailableError as e:
            self.errors.append(f"Database connectivity test failed: {e.message}")

    def _validate_lifecycle_settings(self) -> None:
        """Validate numeric tunables; a malformed value fails at import."""
        try:
            from eips_insight.config.common_settings import get_settings
            settings = get_settings()
        except RuntimeError as e:
            self.errors.append(f"Invalid lifecycle settings: {e}")
            return

        if settings.stall_threshold_days <= 0:
            self.errors.append("STALL_THRESHOLD_DAYS must be positive")
        if settings.trending_window_days <= 0:
            self.errors.append("TRENDING_WINDOW_DAYS must be positive")
        if settings.batch_max_workers <= 0:
            self.errors.append("BATCH_MAX_WORKERS must be positive")
        if settings.batch_max_workers > settings.effective_workers():
            self.warnings.append(
                f"BATCH_MAX_WORKERS={settings.batch_max_workers} exceeds the pool size; "
                f"using {settings.effective_workers()} workers"
            )
        if not settings.editors:
            self.warnings.append("EIP_EDITORS not set; editors are read from contributor_activity only")
        logger.info("StartupValidator: Lifecycle settings validation completed")

    def _validate_optional_config(self) -> None:
        """Validate optional configuration with warnings."""
        optional_configs = {
            "EIPS_INSIGHT_TOKEN": "API token (routes are open without it)",
            "ALLOWED_ORIGINS": "CORS configuration (defaults to *)",
            "DB_STATEMENT_TIMEOUT_MS": "Database timeout (defaults to 60000ms)",
        }

        for var, description in optional_configs.items():
            if not os.environ.get(var):
                self.warnings.append(f"Optional config {var} not set: {description}")

    def _report_results(self) -> None:
        """Report validation results."""
        if self.errors:
            logger.error("StartupValidator: %d critical errors found:", len(self.errors))
            for error in self.errors:
                logger.error("  - %s", error)

        if self.warnings:
            logger.warning("StartupValidator: %d warnings found:", len(self.warnings))
            for warning in self.warnings:
                logger.warning("  - %s", warning)

        if not self.errors and not self.warnings:
            logger.info("StartupValidator: All validation checks passed successfully")
        elif not self.errors:
            logger.info("StartupValidator: Critical validation passed with %d warnings", len(self.warnings))


def validate_startup(check_connectivity: bool = False) -> bool:
    """
    Run startup validation and return success status.

    Returns:
        True if validation passes, False if critical errors found.
    """
    validator = StartupValidator(check_connectivity=check_connectivity)
    return validator.validate_all()


def validate_or_exit() -> None:
    """Run startup validation with a connectivity check and exit on critical errors."""
    if not validate_startup(check_connectivity=True):
        logger.error("StartupValidator: Critical validation errors found. Exiting.")
        sys.exit(1)

    logger.info("StartupValidator: System validation completed successfully")


if __name__ == "__main__":
    # Allow running validation as a standalone script
    validate_or_exit()
