#!/usr/bin/env python3

"""
job-harvest - Main Entry Point
Extracts job records from recruiting-platform listing pages
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List

from dotenv import load_dotenv

from .browser_host import launch_host
from .config_loader import load_config
from .diagnostics import write_diagnostics
from .interceptor import ResponseInterceptor
from .models import ExtractionResult, ExtractionStatus
from .orchestrator import ExtractionOrchestrator
from .session_registry import SessionRegistry

PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)

logger = logging.getLogger(__name__)


def setup_logging(config) -> None:
    """Configure logging for the application"""
    log_file = config.get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, str(config.get_log_level()).upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler()
        ]
    )

    logger.info(f"Logging initialized: {log_file}")


def display_config(config, accounts: List[str], url: str) -> None:
    """Display loaded configuration"""
    print("\n" + "="*60)
    print("🤖 JOB HARVEST")
    print("="*60)

    print(f"\n📋 ACCOUNTS ({len(accounts)}):")
    for i, account in enumerate(accounts, 1):
        print(f"  {i}. {account}")

    print(f"\n🌐 Platform: {config.get_platform()}")
    print(f"📍 Job list URL: {url or '(current page)'}")

    print(f"\n⚙️  BROWSER SETTINGS:")
    print(f"  Headless mode: {config.is_headless()}")
    print(f"  Stealth: {config.use_stealth()}")
    print(f"  Readiness timeout: {config.get_readiness_timeout_ms()/1000}s")
    print(f"  Interception wait: {config.get_interception_timeout_ms()/1000}s")

    print(f"\n🤖 AI FALLBACKS:")
    for section, label in (("ai_text", "Text"), ("ai_vision", "Vision")):
        if config.is_ai_enabled(section):
            print(f"  ✓ {label}: {config.get_ai_provider(section)} {config.get_ai_model(section)}".rstrip())
        else:
            print(f"  ✗ {label}: disabled")

    print("\n" + "="*60 + "\n")


def write_results(results: List[ExtractionResult], path: Path) -> Path:
    """Write all results as one JSON document"""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [result.model_dump(mode="json", exclude={"diagnostics"}) for result in results]
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return path


async def run_extraction(config, accounts: List[str], url: str,
                         read_details: bool = False) -> List[ExtractionResult]:
    """Launch one browser per account and run the cascades concurrently"""
    interceptor = ResponseInterceptor.from_config(config)
    registry = SessionRegistry()
    launched = []
    try:
        for account in accounts:
            handle = await launch_host(config, account, interceptor)
            launched.append(handle)
            registry.register(account, handle.host, job_list_url=url, platform=config.get_platform())

        orchestrator = ExtractionOrchestrator.from_config(config, registry, interceptor=interceptor)
        results = await orchestrator.extract_many(accounts)
        if read_details:
            results = [await read_details_for(orchestrator, result) for result in results]
        return results
    finally:
        for handle in launched:
            interceptor.stop_listening(handle.host.session_id)
            try:
                await handle.close()
            except Exception as exc:
                logger.warning("Failed to close browser: %s", exc)


async def read_details_for(orchestrator: ExtractionOrchestrator, result: ExtractionResult) -> ExtractionResult:
    """Enrich each job of a result from its detail page, one page at a time"""
    if not result.jobs:
        return result
    jobs = [await orchestrator.read_job_detail(result.account_id, job) for job in result.jobs]
    enriched = sum(1 for job in jobs if job.description or job.requirements)
    logger.info("Account %s: read %s/%s detail pages", result.account_id, enriched, len(jobs))
    return result.model_copy(update={"jobs": jobs})


def print_summary(results: List[ExtractionResult]) -> None:
    print("\n" + "="*60)
    print("📊 EXTRACTION SUMMARY")
    print("="*60)
    for result in results:
        icon = "✓" if result.status in (ExtractionStatus.SUCCESS, ExtractionStatus.PARTIAL_SUCCESS) else "✗"
        print(f"\n{icon} {result}")
        if result.reason:
            print(f"  Reason: {result.reason}")
        for outcome in result.outcomes:
            print(f"  - {outcome.strategy.value}: {outcome.record_count} records in {outcome.elapsed_ms}ms"
                  + (f" ({outcome.error})" if outcome.error else ""))
        for job in result.jobs[:10]:
            print(f"    • {job}")
        if len(result.jobs) > 10:
            print(f"    … {len(result.jobs) - 10} more")
    print("\n" + "="*60 + "\n")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Job Harvest - multi-strategy job extraction")
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config YAML",
    )
    parser.add_argument(
        "--account",
        action="append",
        dest="accounts",
        help="Account id (one browser profile each); repeatable",
    )
    parser.add_argument(
        "--url",
        default=None,
        help="Job list URL (defaults to browser.job_list_url)",
    )
    parser.add_argument(
        "--details",
        action="store_true",
        help="Also open each job detail page and read description, requirements and tags (needs ai_text)",
    )
    return parser.parse_args()


def main() -> int:
    """Main execution function"""
    print("\n🚀 Starting Job Harvest...")
    args = parse_args()

    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"\n❌ Failed to load config: {e}")
        return 1

    setup_logging(config)
    accounts = args.accounts or ["default"]
    url = args.url if args.url is not None else config.get_job_list_url()
    display_config(config, accounts, url)

    try:
        results = asyncio.run(run_extraction(config, accounts, url, read_details=args.details))
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Extraction run failed: {e}", exc_info=True)
        print(f"\n❌ Extraction run failed: {e}")
        return 1

    print_summary(results)

    output_path = write_results(results, config.get_output_path())
    print(f"💾 Jobs written to {output_path}")
    template = config.get_diagnostics_template()
    if template:
        diagnostics_path = write_diagnostics([r.diagnostics for r in results], template)
        print(f"🧾 Diagnostics written to {diagnostics_path}")

    succeeded = [r for r in results if r.status in (ExtractionStatus.SUCCESS, ExtractionStatus.PARTIAL_SUCCESS)]
    return 0 if succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
