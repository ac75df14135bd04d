#!/usr/bin/env python3
"""
Email Engagement Report Processing Script

This script builds the per-country, per-day, per-segment email engagement
report from raw account, session and email event exports. It loads the exports
into DuckDB, derives each account's country and creation date, aggregates new
accounts and sent/opened/visited emails, and keeps the countries ranked in the
top N by accounts OR by sent messages.

Usage:
    python process_engagement_report.py                  # Read exports from input/
    python process_engagement_report.py path/to/exports  # Read exports from another folder
    python process_engagement_report.py --top-n=5        # Change the rank cutoff (default 10)
    python process_engagement_report.py --docx           # Also write the leaderboard as DOCX
    python process_engagement_report.py --in-memory      # Don't persist the DuckDB database

Input folder: input/
    One file per source table, named after the table (.parquet, .csv, .xlsx):
    - account             id, send_interval, is_verified, is_unsubscribed
    - account_session     account_id, ga_session_id
    - session             ga_session_id, date
    - session_params      ga_session_id, country
    - email_sent          id_message, id_account, sent_date (days after account creation)
    - email_open          id_message
    - email_visit         id_message

Output:
    - data/engagement.db                    (DuckDB database with every stage table)
    - output/engagement_report.parquet      (report rows of the top countries)
    - output/country_leaderboard.parquet    (one row per surfaced country)
    - output/country_leaderboard.docx       (with --docx)
"""

import sys
from pathlib import Path

import duckdb

from engagement_stages import DEFAULT_TOP_N, REPORT_COLUMNS, REPORT_ORDER, log, run_pipeline
from leaderboard_docx import write_leaderboard_docx
from load_sources import SourceDataError, load_sources, quote_path


SCRIPT_DIR = Path(__file__).parent


def export_parquet_files(con, output_dir):
    """Export the report and leaderboard tables as Parquet files."""
    log("Exporting Parquet files...")

    report_file = output_dir / 'engagement_report.parquet'
    if report_file.exists():
        report_file.unlink()
    con.execute(f"""
        COPY (
            SELECT {', '.join(REPORT_COLUMNS)}
            FROM engagement_report
            ORDER BY {', '.join(REPORT_ORDER)}
        ) TO {quote_path(report_file)} (FORMAT PARQUET, COMPRESSION SNAPPY)
    """)
    report_count = con.execute(f"SELECT COUNT(*) as n FROM read_parquet({quote_path(report_file)})").df()['n'][0]
    log(f"  engagement_report.parquet ({report_count:,} rows)")

    leaderboard_file = output_dir / 'country_leaderboard.parquet'
    if leaderboard_file.exists():
        leaderboard_file.unlink()
    con.execute(f"""
        COPY (
            SELECT *
            FROM country_leaderboard
            ORDER BY rank_total_country_account_cnt, rank_total_country_sent_cnt, country
        ) TO {quote_path(leaderboard_file)} (FORMAT PARQUET, COMPRESSION SNAPPY)
    """)
    leaderboard_count = con.execute(f"SELECT COUNT(*) as n FROM read_parquet({quote_path(leaderboard_file)})").df()['n'][0]
    log(f"  country_leaderboard.parquet ({leaderboard_count} countries)")

    return report_file, leaderboard_file


def export_docx(con, output_dir, top_n):
    """Write the leaderboard as a formatted DOCX table."""
    leaderboard = con.execute("""
        SELECT *
        FROM country_leaderboard
        ORDER BY rank_total_country_account_cnt, rank_total_country_sent_cnt, country
    """).df()
    docx_file = write_leaderboard_docx(leaderboard, output_dir / 'country_leaderboard.docx', top_n)
    log(f"  {docx_file.name} ({len(leaderboard)} countries)")
    return docx_file


def print_summary(con, load_counts, top_n):
    """Print processing summary."""
    log("=" * 60)
    log("SUMMARY")
    log("=" * 60)

    for table, n in load_counts.items():
        log(f"  {table:16} {n:>10,} rows")

    kept = con.execute("SELECT COUNT(*) as n FROM account_dim").df()['n'][0]
    excluded = con.execute("SELECT COUNT(*) as n FROM excluded_accounts").df()['n'][0]
    log(f"Accounts in report base: {kept:,} (excluded: {excluded:,})")

    report_rows = con.execute("SELECT COUNT(*) as n FROM engagement_report").df()['n'][0]
    log(f"Report rows: {report_rows:,}")

    first_date, last_date, days = con.execute("""
        SELECT
            MIN(date) as first_date,
            MAX(date) as last_date,
            COUNT(DISTINCT date) as days
        FROM engagement_report
    """).fetchone()
    if first_date is not None:
        log(f"Date range: {first_date} to {last_date} ({days} days)")

    leaderboard = con.execute("""
        SELECT *
        FROM country_leaderboard
        ORDER BY rank_total_country_account_cnt, rank_total_country_sent_cnt, country
    """).df()

    log(f"\nCountries in top {top_n} by accounts or sent messages:")
    for _, row in leaderboard.iterrows():
        log(f"  {str(row['country']):20} accounts {row['total_country_account_cnt']:>8,} "
            f"(#{row['rank_total_country_account_cnt']})  "
            f"sent {row['total_country_sent_cnt']:>10,} (#{row['rank_total_country_sent_cnt']})")


def process_engagement_report(input_dir=None, top_n=DEFAULT_TOP_N, write_docx=False,
                              in_memory=False, data_dir=None, output_dir=None):
    """
    Main processing function.

    Args:
        input_dir: Folder with one export per source table (default: input/)
        top_n: Rank cutoff for both country leaderboards
        write_docx: If True, also write the leaderboard as DOCX
        in_memory: If True, use an in-memory DuckDB database
        data_dir: Folder for the DuckDB database (default: data/)
        output_dir: Folder for exported files (default: output/)

    Returns:
        The report as a pandas DataFrame
    """
    input_dir = Path(input_dir) if input_dir else SCRIPT_DIR / 'input'
    data_dir = Path(data_dir) if data_dir else SCRIPT_DIR / 'data'
    output_dir = Path(output_dir) if output_dir else SCRIPT_DIR / 'output'
    db_path = data_dir / 'engagement.db'

    if not input_dir.is_dir():
        raise SourceDataError(f"Input folder not found: {input_dir}")

    output_dir.mkdir(parents=True, exist_ok=True)
    if not in_memory:
        data_dir.mkdir(parents=True, exist_ok=True)

    log("=" * 60)
    log("EMAIL ENGAGEMENT REPORT PROCESSING")
    log("=" * 60)

    con = duckdb.connect(':memory:' if in_memory else str(db_path))
    try:
        log(f"\nLoading sources from: {input_dir}")
        load_counts = load_sources(con, input_dir)

        report = run_pipeline(con, top_n)

        export_parquet_files(con, output_dir)
        if write_docx:
            export_docx(con, output_dir, top_n)

        print_summary(con, load_counts, top_n)
    finally:
        con.close()

    if not in_memory:
        log(f"\nDatabase: {db_path}")
    log(f"Output files: {output_dir}")
    log("\nDone!")
    return report


def parse_top_n(value):
    """Parse a --top-n value; must be a positive integer."""
    try:
        top_n = int(value)
    except ValueError:
        raise ValueError(f"--top-n must be a positive integer, got '{value}'")
    if top_n < 1:
        raise ValueError(f"--top-n must be a positive integer, got '{value}'")
    return top_n


def main(argv):
    write_docx = '--docx' in argv
    in_memory = '--in-memory' in argv

    input_dir = None
    top_n = DEFAULT_TOP_N
    try:
        for arg in argv:
            if arg.startswith('--top-n='):
                top_n = parse_top_n(arg.split('=', 1)[1])
            elif not arg.startswith('--'):
                input_dir = arg

        if not argv:
            # No arguments - show help and use input/
            print(__doc__)
            print("\nNo arguments provided - reading exports from input/\n")

        process_engagement_report(input_dir=input_dir, top_n=top_n,
                                  write_docx=write_docx, in_memory=in_memory)
    except ValueError as e:
        # SourceDataError is a ValueError too
        log(f"ERROR: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
