"""
Data generation and loading script for crm-double.

Implements deterministic pseudo-random contact and company generation and
loads them through the record engine's batch API (chunks of 100), then
associates every contact with one company.
"""

from __future__ import annotations

import random
import sys
import time
from typing import Any, Dict, Iterator, List, Optional, Sequence

import typer

from crm_double.engine import CrmEngine, open_engine
from crm_double.store.abstract import MAX_ASSOCIATION_CREATE_BATCH, MAX_RECORD_BATCH

app = typer.Typer(help="Generate synthetic contacts and companies and load them into a crm-double database.")

FIRST_NAMES = ["Ada", "Grace", "Alan", "Edsger", "Barbara", "Donald", "Frances", "Ken", "Radia", "Niklaus"]
LAST_NAMES = ["Lovelace", "Hopper", "Turing", "Dijkstra", "Liskov", "Knuth", "Allen", "Thompson", "Perlman", "Wirth"]
INDUSTRIES = ["COMPUTER_SOFTWARE", "FINANCIAL_SERVICES", "HOSPITAL_HEALTH_CARE", "RETAIL", "EDUCATION"]
WORDS = ["acme", "globex", "initech", "umbrella", "hooli", "stark", "wayne", "tyrell", "cyberdyne", "wonka"]


def _chunks(rows: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def _generate_companies(count: int, seed: int) -> List[Dict[str, str]]:
    rng = random.Random(seed)
    companies = []
    for i in range(count):
        word = rng.choice(WORDS)
        companies.append(
            {
                "name": f"{word.title()} {i}",
                "domain": f"{word}{i}.example.com",
                "industry": rng.choice(INDUSTRIES),
                "numberofemployees": str(rng.randint(1, 5_000)),
            }
        )
    return companies


def _generate_contacts(count: int, domains: Sequence[str], seed: int) -> List[Dict[str, str]]:
    rng = random.Random(seed + 1)
    contacts = []
    for i in range(count):
        first = rng.choice(FIRST_NAMES)
        last = rng.choice(LAST_NAMES)
        domain = domains[i % len(domains)] if domains else "example.com"
        contacts.append(
            {
                "firstname": first,
                "lastname": last,
                "email": f"{first.lower()}.{last.lower()}.{i}@{domain}",
                "phone": f"+1-555-{rng.randint(0, 9999):04d}",
            }
        )
    return contacts


def _load(engine: CrmEngine, object_type: str, rows: Sequence[Dict[str, str]]) -> List[str]:
    ids: List[str] = []
    for chunk in _chunks(rows, MAX_RECORD_BATCH):
        result = engine.records.batch_create(object_type, [{"properties": row} for row in chunk])
        if result.errors:
            typer.echo(f"{object_type}: {result.num_errors} rows rejected, first: {result.errors[0].message}", err=True)
        ids.extend(record.id for record in result.results)
    return ids


def _associate(engine: CrmEngine, contact_ids: Sequence[str], company_ids: Sequence[str]) -> int:
    if not company_ids:
        return 0
    pairs = [
        {"from": {"id": contact_id}, "to": {"id": company_ids[i % len(company_ids)]}}
        for i, contact_id in enumerate(contact_ids)
    ]
    written = 0
    for chunk in _chunks(pairs, MAX_ASSOCIATION_CREATE_BATCH):
        result = engine.associations.batch_associate_default("contacts", "companies", chunk)
        written += len(result.results)
    return written


@app.command()
def main(
    contacts: int = typer.Option(1_000, "--contacts", "-c", help="Number of contacts to generate."),
    companies: int = typer.Option(100, "--companies", help="Number of companies to generate."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
    db_path: Optional[str] = typer.Option(None, "--db", help="SQLite path (default from settings)."),
) -> None:
    """
    Generate synthetic records and load them with batch creates.
    """
    start = time.perf_counter()
    company_rows = _generate_companies(companies, seed)
    contact_rows = _generate_contacts(contacts, [row["domain"] for row in company_rows], seed)
    typer.echo(f"Generated {len(company_rows):,} companies and {len(contact_rows):,} contacts (seed={seed})")

    with open_engine(db_path, seed=True) as engine:
        company_ids = _load(engine, "companies", company_rows)
        contact_ids = _load(engine, "contacts", contact_rows)
        edges = _associate(engine, contact_ids, company_ids)

    duration = time.perf_counter() - start
    total = len(company_ids) + len(contact_ids)
    typer.echo(
        f"Loaded {total:,} records and {edges:,} associations in {duration:.2f}s "
        f"({total / duration:,.0f} records/s)."
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
