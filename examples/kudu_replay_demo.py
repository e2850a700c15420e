#!/usr/bin/env python3
"""Runnable demo: replay sample mutation events into a Kudu cluster.

Prerequisites:
    a reachable Kudu master (KUDU_MASTERS, default localhost:7051) with the
    impala::shop.customers and impala::shop.orders tables created
    pip install -e ".[kudu]"
    python examples/kudu_replay_demo.py
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

from rich.console import Console

from kudu_sink.config.loader import load_settings
from kudu_sink.dispatcher import SyncService
from kudu_sink.errors import StoreConnectionError
from kudu_sink.events import MutationEvent
from kudu_sink.observability.logs import configure_logging
from kudu_sink.template import KuduTemplate

HERE = Path(__file__).resolve().parent
console = Console()


def main() -> None:
    # 1. Load config (defaults + example overrides)
    settings = load_settings(HERE / "sink-config.yaml")
    configure_logging(settings.logging)
    console.print(
        "[bold]Sink config loaded[/bold]",
        f"masters={','.join(settings.kudu.masters)}",
    )

    # 2. Check the target tables
    template = KuduTemplate.from_settings(settings)
    service = SyncService(template, raise_on_error=True)
    try:
        for mapping in settings.mappings:
            if not template.table_exists(mapping.target_table):
                console.print(f"[red]Missing table:[/red] {mapping.target_table}")
                sys.exit(1)

        # 3. Replay events
        with (HERE / "events.jsonl").open() as f:
            for line in f:
                event = MutationEvent.from_dict(json.loads(line))
                mapping = settings.mapping_for(event.database, event.table)
                console.print(
                    f"[cyan]{event.database}.{event.table}[/cyan]  type={event.type}"
                )
                service.sync(mapping, event)

        # 4. Show results
        for mapping in settings.mappings:
            rows = template.count_rows(mapping.target_table)
            console.print(f"[green]{mapping.target_table}[/green]: {rows} rows")
    except StoreConnectionError as exc:
        console.print(f"[red]Kudu unavailable:[/red] {exc}")
        sys.exit(1)
    finally:
        template.close()


if __name__ == "__main__":
    main()
