"""Typer-based CLI for crawling, training and asking a chatbot's knowledge base.

Jobs run on the in-process queue: each command enqueues its work, drains
the queue and exits.
"""

import os

os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

from pathlib import Path

_project_root = Path(__file__).resolve().parent.parent
from dotenv import load_dotenv

load_dotenv(_project_root / ".env")
load_dotenv(_project_root / ".env.local")

import asyncio
from dataclasses import dataclass

import typer

from knowledge_engine.config import get_settings
from knowledge_engine.constants import UNBOUNDED_CRAWL_DEPTH
from knowledge_engine.db.migrate import run_migrations
from knowledge_engine.db.repository import SupabaseKnowledgeRepository
from knowledge_engine.exceptions import KnowledgeEngineError
from knowledge_engine.jobs.job_queue import AsyncioJobQueue
from knowledge_engine.jobs.workers import register_workers
from knowledge_engine.logging_config import init_sentry, setup_logfire
from knowledge_engine.models.training_models import QnaPairCreate
from knowledge_engine.services.chat_service import ChatService
from knowledge_engine.services.crawl_service import CrawlService
from knowledge_engine.services.crawler import CrawlEngine
from knowledge_engine.services.knowledge_service import KnowledgeService
from knowledge_engine.services.rag_service import RagService
from knowledge_engine.services.training import TrainingOrchestrator
from knowledge_engine.services.vector_store import VectorStore

app = typer.Typer(help="Knowledge ingestion and retrieval tools.")


@dataclass
class Runtime:
    """Services wired to the Supabase repository and an in-process queue."""

    queue: AsyncioJobQueue
    crawl_service: CrawlService
    knowledge_service: KnowledgeService
    rag_service: RagService


def build_runtime() -> Runtime:
    settings = get_settings()
    setup_logfire()
    init_sentry()
    repository = SupabaseKnowledgeRepository()
    vector_store = VectorStore(repository, settings=settings)
    queue = AsyncioJobQueue(concurrency=settings.job_queue_concurrency)
    register_workers(
        queue,
        CrawlEngine(repository, settings=settings),
        TrainingOrchestrator(repository, vector_store),
    )
    return Runtime(
        queue=queue,
        crawl_service=CrawlService(repository, queue, settings=settings),
        knowledge_service=KnowledgeService(
            repository, vector_store, queue, settings=settings
        ),
        rag_service=RagService(vector_store, settings=settings),
    )


async def _drain(queue: AsyncioJobQueue) -> None:
    queue.start()
    try:
        await queue.join()
    finally:
        await queue.stop()
    for dead in queue.dead_letters:
        typer.secho(
            f"Job {dead.job_id} on {dead.queue_name} failed after "
            f"{dead.attempts} attempts: {dead.error}",
            fg=typer.colors.RED,
            err=True,
        )


@app.command()
def crawl(
    url: str = typer.Argument(..., help="Seed URL"),
    chatbot_id: str = typer.Option(..., "--chatbot-id", help="Chatbot UUID"),
    max_depth: int = typer.Option(
        UNBOUNDED_CRAWL_DEPTH, "--max-depth", help="Link depth from the seed (-1 = unbounded)"
    ),
    page_limit: int = typer.Option(
        None, "--page-limit", help="Max pages to crawl (defaults to settings)"
    ),
) -> None:
    """Crawl a site and store its pages for later selection."""

    async def _run() -> None:
        runtime = build_runtime()
        job = await runtime.crawl_service.start_crawl(
            chatbot_id, url, max_depth=max_depth, page_limit=page_limit
        )
        typer.echo(f"Crawl job {job.id} queued for {job.url}")
        await _drain(runtime.queue)
        job = await runtime.crawl_service.get_crawl_job(job.id)
        typer.echo(
            f"Status: {job.status.value} (found {job.pages_found}, "
            f"crawled {job.pages_crawled}, failed {job.pages_failed})"
        )
        if job.error_message:
            typer.secho(f"Error: {job.error_message}", fg=typer.colors.RED)

    try:
        asyncio.run(_run())
    except KnowledgeEngineError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


@app.command()
def cancel(job_id: str = typer.Argument(..., help="Crawl job UUID")) -> None:
    """Cancel a queued or running crawl job."""

    async def _run() -> None:
        runtime = build_runtime()
        job = await runtime.crawl_service.cancel_crawl(job_id)
        typer.echo(f"Crawl job {job.id} is {job.status.value}")

    try:
        asyncio.run(_run())
    except KnowledgeEngineError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


@app.command("add-qna")
def add_qna(
    question: str = typer.Argument(..., help="Question text"),
    answer: str = typer.Argument(..., help="Answer text"),
    chatbot_id: str = typer.Option(..., "--chatbot-id", help="Chatbot UUID"),
) -> None:
    """Add a Q&A pair and train it."""

    async def _run() -> None:
        runtime = build_runtime()
        pair = await runtime.knowledge_service.create_qna(
            chatbot_id, QnaPairCreate(question=question, answer=answer)
        )
        typer.echo(f"QnA pair {pair.id} created, training...")
        await _drain(runtime.queue)
        pair = await runtime.knowledge_service.get_qna(pair.id)
        typer.echo(f"Training status: {pair.training_status.value}")

    asyncio.run(_run())


@app.command("set-text")
def set_text(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Text file"),
    chatbot_id: str = typer.Option(..., "--chatbot-id", help="Chatbot UUID"),
) -> None:
    """Replace the chatbot's free-text training block with a file's contents."""

    async def _run() -> None:
        runtime = build_runtime()
        block = await runtime.knowledge_service.upsert_text_training(
            chatbot_id, path.read_text(encoding="utf-8")
        )
        typer.echo(f"Text training {block.id} saved, training...")
        await _drain(runtime.queue)
        block = await runtime.knowledge_service.get_text_training(chatbot_id)
        if block is not None:
            typer.echo(f"Training status: {block.training_status.value}")

    asyncio.run(_run())


@app.command()
def ask(
    question: str = typer.Argument(..., help="User message"),
    chatbot_id: str = typer.Option(..., "--chatbot-id", help="Chatbot UUID"),
    system_prompt: str = typer.Option(
        "", "--system-prompt", help="Chatbot's own system prompt"
    ),
) -> None:
    """Answer a question using the chatbot's knowledge base."""

    async def _run() -> None:
        runtime = build_runtime()
        chat = ChatService(runtime.rag_service)
        turn = await chat.prepare_turn(chatbot_id, question, system_prompt or None)
        async for delta in chat.stream_reply(turn):
            typer.echo(delta, nl=False)
        typer.echo()
        for index, ctx in enumerate(turn.contexts, start=1):
            typer.secho(
                f"[Source {index}] score={ctx.score:.3f} {ctx.content[:80]}",
                fg=typer.colors.BLUE,
            )

    asyncio.run(_run())


@app.command()
def migrate(
    database_url: str = typer.Option(
        None, "--database-url", help="Postgres URI (defaults to DATABASE_URL)"
    ),
) -> None:
    """Apply SQL migrations in migrations/."""
    run_migrations(database_url)


if __name__ == "__main__":
    app()
