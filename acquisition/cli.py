"""CLI for the product acquisition pipeline."""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from typing import List, Optional

import click
from dotenv import load_dotenv

from .config import SCRAPE_QUEUE, PipelineConfig
from .consumer import Broker, QueueConsumer, enqueue_items, load_articles
from .errors import ConfigError
from .extraction import ExtractionClient
from .ledger import FailureLedger
from .models import WorkItem
from .pipeline import AcquisitionPipeline
from .scraper import ScrapeOrchestrator, check_url
from .storage import InMemoryStore, PostgresStore, Store

LOGGER = logging.getLogger(__name__)

STORE_CHOICE = click.Choice(["postgres", "memory"])


def _get_env(name: str) -> str:
    load_dotenv()
    value = os.getenv(name)
    if not value:
        raise click.ClickException(f"{name} is not set")
    return value


def _load_config() -> PipelineConfig:
    try:
        return PipelineConfig.from_env()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _make_store(kind: str, dsn: Optional[str] = None) -> Store:
    if kind == "memory":
        click.echo("⚠️  Using in-memory store, nothing will be persisted")
        return InMemoryStore()
    return PostgresStore(dsn or _get_env("DATABASE_URL"))


def _build_pipeline(config: PipelineConfig, store: Store, broker: Optional[Broker] = None) -> AcquisitionPipeline:
    return AcquisitionPipeline(
        orchestrator=ScrapeOrchestrator(config.scraper, denied_offer_ids=config.denied_offer_ids),
        extraction_client=ExtractionClient(config.extraction),
        store=store,
        ledger=FailureLedger(store, denied_offer_ids=config.denied_offer_ids),
        publisher=broker,
        extraction_queue=config.extraction_queue.name,
        model=config.extraction.model,
        credentials=config.credentials,
        denied_offer_ids=config.denied_offer_ids,
        direct_offer_id=config.direct_offer_id,
    )


@click.group()
@click.option("--log-level", default="INFO", show_default=True, help="Logging level")
def cli(log_level: str) -> None:
    """Product acquisition CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


@cli.command()
@click.option("--url", required=True, help="Product URL")
@click.option("--key", required=True, help="Natural key of the product (id_product_smi)")
@click.option("--offer-id", required=True, type=int, help="Offer (brand) id")
@click.option("--queue", "queue_name", default=lambda: os.getenv("SCRAPE_QUEUE", SCRAPE_QUEUE), help="Target queue")
def enqueue(url: str, key: str, offer_id: int, queue_name: str) -> None:
    """Publish one URL to the scrape queue."""
    item = WorkItem(url=url, key=key, offerId=offer_id)

    async def _publish() -> int:
        broker = Broker(_get_env("RABBITMQ_URL"))
        try:
            return await enqueue_items(broker, queue_name, [item])
        finally:
            await broker.close()

    asyncio.run(_publish())
    click.echo(f"✅ Enqueued {key} on {queue_name}")


@cli.command("enqueue-file")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--queue", "queue_name", default=lambda: os.getenv("SCRAPE_QUEUE", SCRAPE_QUEUE), help="Target queue")
def enqueue_file(path: str, queue_name: str) -> None:
    """Publish every article of an articles.json export to the scrape queue."""
    items = load_articles(path)
    if not items:
        click.echo("⚠️  No articles found")
        return

    async def _publish() -> int:
        broker = Broker(_get_env("RABBITMQ_URL"))
        try:
            return await enqueue_items(broker, queue_name, items)
        finally:
            await broker.close()

    sent = asyncio.run(_publish())
    click.echo(f"✅ Enqueued {sent} article(s) on {queue_name}")


async def _consume(config: PipelineConfig, store: Store) -> List[QueueConsumer]:
    broker = Broker(config.rabbitmq_url)
    pipeline = _build_pipeline(config, store, broker)
    consumers = [
        QueueConsumer(config.scrape_queue, pipeline.handle_scrape_message),
        QueueConsumer(config.extraction_queue, pipeline.handle_extraction_message),
    ]

    def _handle_shutdown(signum: int) -> None:
        LOGGER.info("Received shutdown signal %s, stopping gracefully...", signum)
        for consumer in consumers:
            consumer.stop()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, _handle_shutdown, signum)

    try:
        for consumer in consumers:
            await broker.subscribe(consumer.name, consumer.settings.batch_size, consumer.on_message)
        await asyncio.gather(*(consumer.run() for consumer in consumers))
    finally:
        await pipeline.extraction_client.aclose()
        await broker.close()
    return consumers


@cli.command()
@click.option("--store", "store_kind", type=STORE_CHOICE, default="postgres", show_default=True)
def consume(store_kind: str) -> None:
    """Consume the scrape and extraction queues until SIGINT/SIGTERM."""
    config = _load_config()
    store = _make_store(store_kind, config.database_url)

    click.echo(
        f"🚀 Consuming {config.scrape_queue.name} and {config.extraction_queue.name} "
        f"with {len(config.credentials)} credential(s)"
    )
    consumers = asyncio.run(_consume(config, store))

    click.echo("\n📊 Consumer Statistics\n" + "=" * 40)
    for consumer in consumers:
        stats = consumer.stats
        click.echo(f"  {consumer.name:20s}: batches={stats.batches} acked={stats.acked} nacked={stats.nacked}")


@cli.command("extract-one")
@click.option("--url", required=True, help="Product URL")
@click.option("--key", required=True, help="Natural key of the product (id_product_smi)")
@click.option("--offer-id", required=True, type=int, help="Offer (brand) id")
@click.option("--store", "store_kind", type=STORE_CHOICE, default="postgres", show_default=True)
def extract_one(url: str, key: str, offer_id: int, store_kind: str) -> None:
    """Scrape, extract and store one product without the queues."""
    config = _load_config()
    store = _make_store(store_kind, config.database_url)
    pipeline = _build_pipeline(config, store)

    async def _run():
        try:
            return await pipeline.extract_one(WorkItem(url=url, key=key, offerId=offer_id))
        finally:
            await pipeline.extraction_client.aclose()

    product = asyncio.run(_run())
    if product is None:
        click.echo(f"❌ No product stored for {key}, see the failed/invalid records")
        sys.exit(1)

    click.echo(f"✅ Stored {product.id_product}: {product.product_name}")
    for name, value in product.model_dump(exclude_none=True).items():
        if name != "description":
            click.echo(f"  {name:16s}: {value}")


@cli.command("check-url")
@click.argument("url")
def check_url_command(url: str) -> None:
    """Tell whether a URL looks like a homepage."""
    result = check_url(url)
    marker = "✅" if result.valid else "❌"
    click.echo(f"{marker} {result.url}: {result.message}")


@cli.command()
def resolve() -> None:
    """Mark failed records whose key now has a product as resolved."""
    ledger = FailureLedger(_make_store("postgres"))
    count = asyncio.run(ledger.reconcile())
    click.echo(f"✅ Resolved {count} failed record(s)")


@cli.command()
def ignore() -> None:
    """Ignore unrecoverable, exhausted and resolved failed records."""
    ledger = FailureLedger(_make_store("postgres"))
    count = asyncio.run(ledger.apply_ignore_policy())
    click.echo(f"✅ Ignored {count} failed record(s)")


@cli.command()
def unresolved() -> None:
    """List failed records that are still worth retrying."""
    ledger = FailureLedger(_make_store("postgres"))
    items = asyncio.run(ledger.retry_candidates())

    click.echo(f"\n📋 Retry candidates: {len(items)}\n" + "=" * 40)
    for item in items:
        click.echo(f"  {item.key:24s} offer={item.offer_id:<8d} {item.url}")


@cli.command("requeue-failed")
@click.option("--queue", "queue_name", default=lambda: os.getenv("SCRAPE_QUEUE", SCRAPE_QUEUE), help="Target queue")
def requeue_failed(queue_name: str) -> None:
    """Publish retry candidates back onto the scrape queue."""
    ledger = FailureLedger(_make_store("postgres"))

    async def _requeue() -> int:
        items = await ledger.retry_candidates()
        if not items:
            return 0
        broker = Broker(_get_env("RABBITMQ_URL"))
        try:
            return await enqueue_items(broker, queue_name, items)
        finally:
            await broker.close()

    sent = asyncio.run(_requeue())
    click.echo(f"✅ Requeued {sent} failed item(s) on {queue_name}")


if __name__ == "__main__":
    cli()
