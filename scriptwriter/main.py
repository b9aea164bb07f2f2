"""
Scriptwriter - Main Entry Point
Interactive story tree generation.

Commands:
    generate  Run the engine once for a story (optionally replaying
              recorded responses against in-memory persistence).
    worker    Process generation jobs from the Redis queue.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from scriptwriter.config import ScriptwriterConfiguration, create_default_config_from_env
from scriptwriter.core import (
    InteractiveStoryError,
    InteractiveStoryGenerator,
    StoryIntegrityError,
    build_story_tree_snapshot,
)
from scriptwriter.models import GenerationJob, GenerationReport
from scriptwriter.prompts import SystemPromptCache
from scriptwriter.services import (
    FixtureJsonClient,
    InMemorySceneletPersistence,
    JsonModelClient,
    ModelClientError,
    PersistenceError,
    RedisQueueService,
    RedisWorker,
    SceneletPersistence,
    SupabaseSceneletPersistence,
    create_json_client,
)

logger = logging.getLogger("scriptwriter")


def configure_logging(verbose: bool = False) -> None:
    """Attach a stream handler to the package logger."""
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logger.addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scriptwriter",
        description="Generate branching interactive story trees.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Generate or resume one story tree.")
    generate.add_argument("--story-id", required=True, help="Story identifier.")
    constitution = generate.add_mutually_exclusive_group(required=True)
    constitution.add_argument("--constitution", help="Story constitution text.")
    constitution.add_argument("--constitution-file", help="Path to a file holding the story constitution.")
    generate.add_argument(
        "--responses-file",
        help="JSON array of recorded model responses; replays them against in-memory persistence.",
    )
    generate.add_argument("--print-tree", action="store_true", help="Print the story tree snapshot when done.")
    generate.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help="Enable debug logging."
    )

    subparsers.add_parser("worker", help="Process generation jobs from the Redis queue.")
    return parser


def read_constitution(args: argparse.Namespace) -> str:
    if args.constitution_file:
        return Path(args.constitution_file).read_text(encoding="utf-8")
    return args.constitution


def load_system_prompt(config: ScriptwriterConfiguration) -> str:
    return SystemPromptCache(config.system_prompt_path).get()


async def create_supabase_persistence(config: ScriptwriterConfiguration) -> SupabaseSceneletPersistence:
    persistence = SupabaseSceneletPersistence(
        supabase_url=config.supabase_url,
        supabase_key=config.supabase_key.get_secret_value() if config.supabase_key else None,
    )
    if not await persistence.connect():
        raise PersistenceError("Could not connect to Supabase; check SUPABASE_URL and SUPABASE_SERVICE_KEY.")
    return persistence


async def print_story_tree(persistence: SceneletPersistence, story_id: str) -> None:
    records = await persistence.list_scenelets_by_story(story_id)
    if not records:
        print(f"Story {story_id} has no scenelets.")
        return
    print(build_story_tree_snapshot(records, story_id).to_text())


async def run_generate(args: argparse.Namespace, config: ScriptwriterConfiguration) -> int:
    """Run the engine once and print the generation report."""
    constitution = read_constitution(args)

    json_client: JsonModelClient
    persistence: SceneletPersistence
    if args.responses_file:
        json_client = FixtureJsonClient.from_file(args.responses_file)
        persistence = InMemorySceneletPersistence()
    else:
        errors = config.validate_settings()
        if errors:
            for error in errors:
                logger.error(f"[run_generate] Configuration error: {error}")
            return 2
        json_client = create_json_client(config)
        persistence = await create_supabase_persistence(config)

    generator = InteractiveStoryGenerator(
        json_client,
        persistence,
        system_prompt=load_system_prompt(config),
        settings=config.generation,
    )

    report = await generator.generate(args.story_id, constitution)
    print(report.model_dump_json(indent=2))

    if args.print_tree:
        await print_story_tree(persistence, args.story_id)

    return 0 if report.succeeded else 1


class GenerationWorker:
    """Redis-driven worker that runs one engine generation per job."""

    def __init__(self, config: ScriptwriterConfiguration):
        self.config = config
        self.redis_service: Optional[RedisQueueService] = None
        self.generator: Optional[InteractiveStoryGenerator] = None
        self.worker: Optional[RedisWorker] = None

    async def initialize(self) -> None:
        """Connect to Redis and Supabase and build the engine."""
        self.redis_service = RedisQueueService(self.config.redis_url)
        await self.redis_service.connect()
        logger.info(f"[initialize] Connected to Redis at {self.config.redis_url}")

        persistence = await create_supabase_persistence(self.config)
        logger.info("[initialize] Connected to Supabase")

        self.generator = InteractiveStoryGenerator(
            create_json_client(self.config),
            persistence,
            system_prompt=load_system_prompt(self.config),
            settings=self.config.generation,
        )

    async def process_job(self, job: GenerationJob) -> Dict[str, Any]:
        """
        Generate (or resume) the job's story.

        A run with task failures raises so the queue re-enqueues the job;
        the next attempt resumes from whatever was persisted.
        """
        report: GenerationReport = await self.generator.generate(job.story_id, job.story_constitution)
        if not report.succeeded:
            raise InteractiveStoryError(
                f"{len(report.failures)} generation tasks failed for story {job.story_id}: "
                f"{report.failures[0].error_type}: {report.failures[0].message}"
            )
        return report.model_dump(mode="json")

    async def run(self) -> None:
        logger.info(f"[run] Starting scriptwriter worker (provider={self.config.provider.value})")
        self.worker = RedisWorker(
            self.redis_service, self.process_job, permanent_errors=(StoryIntegrityError,)
        )
        await self.worker.start()

    def stop(self) -> None:
        if self.worker:
            self.worker.stop()

    async def shutdown(self) -> None:
        """Gracefully shut down the worker."""
        logger.info("[shutdown] Shutting down scriptwriter worker...")
        self.stop()
        if self.redis_service:
            await self.redis_service.disconnect()


async def run_worker(config: ScriptwriterConfiguration) -> int:
    errors = config.validate_settings()
    if errors:
        for error in errors:
            logger.error(f"[run_worker] Configuration error: {error}")
        return 2

    worker = GenerationWorker(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.initialize()
        await worker.run()
    finally:
        await worker.shutdown()
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = create_default_config_from_env()
    except ValueError as e:
        logger.error(f"[main] Configuration error: {e}")
        return 2

    try:
        if args.command == "generate":
            return await run_generate(args, config)
        return await run_worker(config)
    except (InteractiveStoryError, ModelClientError, PersistenceError) as e:
        logger.error(f"[main] {type(e).__name__}: {e}")
        return 1


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
