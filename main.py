#!/usr/bin/env python3
"""
835 Remittance Loader Command Line Tool

Walks an X12 835 file loop by loop and either dumps every sink call to JSON or
loads the remittance into a SQLite database.

Usage:
    python main.py input.edi                               # Load input.edi -> input.json
    python main.py input.edi output.json                   # Load to specific output file
    python main.py input.edi --database remit.db           # Load into SQLite
    python main.py input.edi --settings loader.json        # Use custom settings
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Try importing from installed package first, fallback to src path
try:
    from loop_dispatcher import LoopDispatcher
    from remit_config import LoaderSettings, configure_logging, load_settings
    from remit_errors import RemittanceError
    from remit_sink import RecordingSink
    from segment_tokenizer import X12Tokenizer
    from sqlite_sink import SqliteSink
except ImportError:
    # Add src to path for imports when not installed
    sys.path.insert(0, str(Path(__file__).parent / "src"))
    from loop_dispatcher import LoopDispatcher
    from remit_config import LoaderSettings, configure_logging, load_settings
    from remit_errors import RemittanceError
    from remit_sink import RecordingSink
    from segment_tokenizer import X12Tokenizer
    from sqlite_sink import SqliteSink

logger = logging.getLogger("remit_loader")


def build_dispatcher(sink, settings: LoaderSettings) -> LoopDispatcher:
    return LoopDispatcher(
        sink,
        composite_elements=settings.composite_elements,
        repetition_separator=settings.repetition_separator,
        composite_separator=settings.composite_separator,
    )


def load_to_json(edi_content: str, output_file: str, settings: LoaderSettings) -> int:
    sink = RecordingSink()
    dispatcher = build_dispatcher(sink, settings)
    states = dispatcher.consume(X12Tokenizer(edi_content).segments())

    output = {
        "transactions": [state.model_dump(mode="json") for state in states],
        "records": [record.model_dump(mode="json") for record in sink.records],
        "anomalies": [anomaly.model_dump(mode="json") for anomaly in dispatcher.anomalies],
    }
    json_output = json.dumps(output, indent=2)
    with open(output_file, "w") as f:
        f.write(json_output)

    print(f"Transaction Sets: {len(states)}")
    print(f"Sink Records: {len(sink.records)}")
    print(f"Structural Anomalies: {len(dispatcher.anomalies)}")
    print(f"JSON output saved to: {output_file}")
    return 0


def load_to_database(edi_content: str, database_path: str, settings: LoaderSettings) -> int:
    with SqliteSink(database_path) as sink:
        dispatcher = build_dispatcher(sink, settings)
        states = dispatcher.consume(X12Tokenizer(edi_content).segments())

    print(f"Transaction Sets: {len(states)}")
    print(f"Structural Anomalies: {len(dispatcher.anomalies)}")
    print(f"Loaded into SQLite database: {database_path}")
    return 0


def main():
    """Main entry point with command line argument parsing."""

    parser = argparse.ArgumentParser(
        description="Load X12 835 remittance files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py remit.edi                          # Load remit.edi -> remit.json
  python main.py remit.edi output.json              # Load to specific output
  python main.py remit.edi --database remit.db      # Load into SQLite
        """,
    )

    parser.add_argument("input_file", help="Input 835 EDI file")
    parser.add_argument("output_file", nargs="?", help="Output JSON file (default: input_file.json)")
    parser.add_argument("--database", help="SQLite database path; overrides the JSON output")
    parser.add_argument("--settings", help="Loader settings JSON file")
    parser.add_argument("--log-level", help="Logging level (default: from settings, else INFO)")

    args = parser.parse_args()

    try:
        overrides = {"log_level": args.log_level} if args.log_level else None
        settings = load_settings(args.settings, overrides)
    except RemittanceError as e:
        print(f"Error: {e}")
        return 1
    configure_logging(settings.log_level)

    if not Path(args.input_file).exists():
        print(f"Error: Input file not found: {args.input_file}")
        return 1

    if not args.output_file:
        args.output_file = str(Path(args.input_file).with_suffix(".json"))

    with open(args.input_file, "r") as f:
        edi_content = f.read().strip()
    logger.info(f"Loaded {len(edi_content)} characters from {args.input_file}")

    database_path = args.database or settings.database_path
    try:
        if database_path:
            return load_to_database(edi_content, database_path, settings)
        return load_to_json(edi_content, args.output_file, settings)
    except RemittanceError as e:
        print(f"Error during 835 processing: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
