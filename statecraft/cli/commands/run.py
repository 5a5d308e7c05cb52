"""Run command implementation."""

import asyncio
import logging
from argparse import Namespace
from pathlib import Path
from typing import Any, Dict

import yaml

from statecraft.exceptions import PlaybookValidationError, StatecraftError
from statecraft.loader import PlaybookLoader
from statecraft.security.secrets import SecretsManager, SecretsMaskingFilter
from statecraft.workflow.executor import PlaybookExecutor


logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def parse_variables(args: Namespace) -> Dict[str, Any]:
    """Parse run variables from ``--vars-file`` and ``--var`` (the latter wins)."""
    variables: Dict[str, Any] = {}

    if args.vars_file:
        vars_file = Path(args.vars_file)
        if not vars_file.exists():
            raise FileNotFoundError(f"Variables file not found: {vars_file}")

        with open(vars_file, 'r') as f:
            # YAML is a superset of JSON
            file_vars = yaml.safe_load(f)
        if not isinstance(file_vars, dict):
            raise ValueError(f"Variables file must contain an object, got {type(file_vars).__name__}")
        variables.update({str(k): v for k, v in file_vars.items()})

    for item in args.var or []:
        if '=' not in item:
            raise ValueError(f"Invalid variable format: {item}. Expected KEY=VALUE")
        key, value = item.split('=', 1)
        variables[key] = value

    return variables


def configure_logging(args: Namespace, secrets_manager: SecretsManager) -> None:
    """Configure the root logger and mask secrets on its handlers."""
    level_name = 'warning' if args.log_level == 'warn' else args.log_level
    log_level = getattr(logging, level_name.upper())
    if args.debug:
        log_level = logging.DEBUG
    elif args.quiet:
        log_level = logging.ERROR

    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    masking_filter = SecretsMaskingFilter(secrets_manager)
    for handler in logging.getLogger().handlers:
        handler.addFilter(masking_filter)


def run_playbook(args: Namespace) -> int:
    """
    Run a playbook.

    Returns:
        0 on success, 1 on run failure, 2 on validation errors
    """
    secrets_manager = SecretsManager()
    configure_logging(args, secrets_manager)

    try:
        playbook_path = Path(args.playbook).resolve()
        if not playbook_path.exists():
            logger.error(f"Playbook file not found: {playbook_path}")
            return 1

        logger.info(f"Loading playbook: {playbook_path}")
        try:
            playbook = PlaybookLoader().load(playbook_path)
        except PlaybookValidationError as e:
            for error in e.errors:
                logger.error(f"Validation error: {error.message}")
            return e.exit_code

        if args.dry_run:
            logger.info("[DRY RUN] Playbook validation successful")
            return 0

        variables = parse_variables(args)
        executor = PlaybookExecutor(
            playbook,
            variables=variables,
            forks=args.forks,
            check_mode=args.check,
            secrets_manager=secrets_manager,
        )
        summary = asyncio.run(executor.execute())
        logger.info(f"Playbook {summary['status']}")
        return 0

    except StatecraftError as e:
        logger.error(f"Run failed: {e}")
        stderr = getattr(e, 'stderr', None)
        if stderr:
            logger.error(stderr.strip())
        return e.exit_code
    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        return 2
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1
