"""Contact Finder - media contact discovery

Simple CLI for running a contact search.
"""

import argparse
import asyncio

from contact_finder.agents.orchestrator import SearchOrchestrator
from contact_finder.models.events import SearchEvent
from contact_finder.models.schemas import SearchConfiguration, SearchCriteria, SearchOptions


def _split(value: str | None) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


async def print_event(event: SearchEvent) -> None:
    event_type = event.event.value
    data = event.data

    if event_type == "stage_started":
        print(f"\n[~] Starting {data.get('stage')} stage...")

    elif event_type == "stage_completed":
        extras = {k: v for k, v in data.items() if k not in ("stage", "duration_ms")}
        print(f"  [+] {data.get('stage')} complete in {data.get('duration_ms')}ms {extras}")

    elif event_type == "search_result":
        print(f"  [*] {data.get('url')} ({data.get('contacts', 0)} contact(s))")

    elif event_type == "error":
        print(f"  [!] {data.get('stage')}: {data.get('message')}")

    elif event_type == "search_failed":
        print(f"\n[!] Search failed: {data.get('message')}")

    elif event_type == "search_cancelled":
        print(f"\n[!] Search cancelled: {data.get('reason')}")


async def run_search(args: argparse.Namespace) -> None:
    config = SearchConfiguration(
        query=args.query,
        criteria=SearchCriteria(
            countries=_split(args.countries),
            categories=_split(args.categories),
            beats=_split(args.beats),
            languages=_split(args.languages),
            topics=_split(args.topics),
            domains=_split(args.domains),
            exclude_domains=_split(args.exclude_domains),
        ),
        options=SearchOptions(
            max_results=args.max_results,
            max_queries=args.max_queries,
            confidence_threshold=args.confidence_threshold,
            enable_ai_enhancement=not args.no_ai,
            enable_content_scraping=not args.no_scrape,
            extraction_method=args.extraction_method,
        ),
    )

    print(f"Contact search: {config.query}")
    print("-" * 50)

    orchestrator = SearchOrchestrator(listener=print_event)
    result = await orchestrator.run_search(config, user_id=args.user)

    print(f"\n[*] Search {result.status.value}")
    print(f"   Runtime: {result.processing_time_ms}ms")
    print(f"   Sources: {result.total_results}")
    print(f"   Contacts: {result.unique_contacts} ({result.duplicate_contacts} duplicates merged)")
    print(f"\n{'='*50}")
    for contact in result.contacts:
        details = ", ".join(v for v in (contact.title, contact.outlet, contact.email) if v)
        print(f"{contact.name} [{contact.confidence_score:.2f}] {details}")


def main():
    parser = argparse.ArgumentParser(description="Contact Finder media contact search")
    parser.add_argument("--query", "-q", required=True, help="Search query")
    parser.add_argument("--countries", help="Comma-separated country codes")
    parser.add_argument("--categories", help="Comma-separated media categories")
    parser.add_argument("--beats", help="Comma-separated journalist beats")
    parser.add_argument("--languages", help="Comma-separated language codes")
    parser.add_argument("--topics", help="Comma-separated topics")
    parser.add_argument("--domains", help="Only search these domains")
    parser.add_argument("--exclude-domains", help="Never search these domains")
    parser.add_argument("--max-results", type=int, default=50, help="Maximum sources to process")
    parser.add_argument("--max-queries", type=int, default=20, help="Maximum generated queries")
    parser.add_argument("--confidence-threshold", type=float, default=0.5)
    parser.add_argument(
        "--extraction-method",
        choices=["rule_based", "ai_based", "hybrid"],
        default="hybrid",
    )
    parser.add_argument("--no-ai", action="store_true", help="Disable AI query enhancement")
    parser.add_argument("--no-scrape", action="store_true", help="Use search snippets instead of fetching pages")
    parser.add_argument("--user", default="cli", help="User id recorded on the job")

    args = parser.parse_args()

    asyncio.run(run_search(args))


if __name__ == "__main__":
    main()
