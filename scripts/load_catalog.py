#!/usr/bin/env python3
"""
Contraindication Alert Engine
Catalog Loader - Validate and normalise reference data

Usage:
    python load_catalog.py /path/to/catalog.(json|xlsx|dir) [--output catalog.json] [--csv-dir out/]
    python load_catalog.py sample [--output data/sample_catalog.json]
"""
import sys
import shutil
import asyncio
import logging
import argparse
from pathlib import Path

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from contraindication_engine.config.settings import DATA_DIR, LOG_LEVEL, LOG_FORMAT
from contraindication_engine.core.catalog import CatalogStore, FileReferenceDataSource
from contraindication_engine.nlp.substance_matcher import SubstanceMatcher

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

SAMPLE_CATALOG = DATA_DIR / "sample_catalog.json"


def load_and_process_catalog(
    input_path: str,
    output_path: str = None,
    csv_dir: str = None,
    queries=None
):
    """
    Load a catalog, report statistics and optionally export it.

    Args:
        input_path: JSON file, Excel workbook or directory of CSV tables
        output_path: Optional output path for the normalised JSON
        csv_dir: Optional directory to write one CSV per table
        queries: Plan phrases to try against the loaded substances
    """
    logger.info(f"Loading catalog from: {input_path}")

    store = CatalogStore(FileReferenceDataSource(input_path))
    snapshot = asyncio.run(store.load())

    stats = snapshot.statistics()
    logger.info("Catalog Statistics:")
    for key, value in stats.items():
        logger.info(f"  {key}: {value}")

    for table in snapshot.unavailable:
        logger.error(f"  {table}: {snapshot.errors[table].message}")

    if output_path:
        snapshot.export(output_path)

    if csv_dir:
        out = Path(csv_dir)
        out.mkdir(parents=True, exist_ok=True)
        for table, rows in snapshot.to_dict().items():
            df = pd.DataFrame(rows)
            if "aliases" in df.columns:
                df["aliases"] = df["aliases"].apply(lambda a: "|".join(a))
            df.to_csv(out / f"{table}.csv", index=False)
        logger.info(f"Wrote CSV tables to: {out}")

    if queries:
        logger.info("Sample Matches:")
        matcher = SubstanceMatcher(snapshot)
        for query in queries:
            results = matcher.preview(query, limit=3)
            logger.info(f"  '{query}': {', '.join(s.canonical_name for s in results) or 'no match'}")

    return snapshot, stats


def generate_sample_catalog(output_path: str):
    """Copy the bundled sample catalog for development"""
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(SAMPLE_CATALOG, output)
    logger.info(f"Saved sample catalog to: {output}")
    return output


def main():
    parser = argparse.ArgumentParser(
        description="Load and validate contraindication reference data"
    )
    parser.add_argument(
        "input",
        nargs="?",
        help="Catalog JSON, Excel workbook or CSV directory (or 'sample' to copy sample data)"
    )
    parser.add_argument(
        "--output", "-o",
        help="Output path for normalised JSON"
    )
    parser.add_argument(
        "--csv-dir",
        help="Directory to write one CSV per table"
    )
    parser.add_argument(
        "--query", "-q",
        action="append",
        default=[],
        help="Plan phrase to preview against the catalog (repeatable)"
    )

    args = parser.parse_args()

    if args.input == "sample" or args.input is None:
        logger.info("Generating sample catalog for development...")
        generate_sample_catalog(args.output or "data/sample_catalog.json")
        return 0

    snapshot, _ = load_and_process_catalog(args.input, args.output, args.csv_dir, args.query)
    return 0 if snapshot.can_evaluate else 1


if __name__ == "__main__":
    sys.exit(main())
