"""
Source table loading for the engagement report.

Reads the seven source datasets (account, account_session, session,
session_params, email_sent, email_open, email_visit) from an input folder or
from in-memory DataFrames into DuckDB tables, normalizes column names and
session dates, and checks that every required column is present.
"""

import re
from pathlib import Path

import pandas as pd

from engagement_stages import log


# Required columns per source table
SOURCE_TABLES = {
    'account': ['id', 'send_interval', 'is_verified', 'is_unsubscribed'],
    'account_session': ['account_id', 'ga_session_id'],
    'session': ['ga_session_id', 'date'],
    'session_params': ['ga_session_id', 'country'],
    'email_sent': ['id_message', 'id_account', 'sent_date'],
    'email_open': ['id_message'],
    'email_visit': ['id_message'],
}

# Lookup order when several files share a table name
FILE_SUFFIXES = ['.parquet', '.csv', '.xlsx', '.xls']

COLUMN_ALIASES = {
    'account': {'account_id': 'id'},
    'account_session': {'session_id': 'ga_session_id'},
    'session': {'session_id': 'ga_session_id', 'session_date': 'date'},
    'session_params': {'session_id': 'ga_session_id'},
    'email_sent': {
        'message_id': 'id_message',
        'account_id': 'id_account',
        'sent_date_offset': 'sent_date',
    },
    'email_open': {'message_id': 'id_message'},
    'email_visit': {'message_id': 'id_message'},
}

# (pattern, strptime format); None means DuckDB can CAST the value directly
DATE_FORMATS = [
    (r'^\d{4}-\d{2}-\d{2}$', None),
    (r'^\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}(:\d{2}(\.\d+)?)?$', None),
    (r'^\d{2}\.\d{2}\.\d{4}$', '%d.%m.%Y'),
    (r'^\d{2}\.\d{2}\.\d{4} \d{2}:\d{2}:\d{2}$', '%d.%m.%Y %H:%M:%S'),
    (r'^\d{2}\.\d{2}\.\d{4} \d{2}:\d{2}$', '%d.%m.%Y %H:%M'),
    (r'^\d{2}/\d{2}/\d{4}$', '%d/%m/%Y'),
    (r'^\d{2}/\d{2}/\d{4} \d{2}:\d{2}:\d{2}$', '%d/%m/%Y %H:%M:%S'),
    (r'^\d{2}/\d{2}/\d{4} \d{2}:\d{2}$', '%d/%m/%Y %H:%M'),
]


class SourceDataError(ValueError):
    """A source table is missing or does not have the expected columns."""


def quote_path(path):
    """Render a file path as a SQL string literal."""
    return "'" + str(path).replace("'", "''") + "'"


def find_source_file(input_dir, table):
    """Return the input file for a table (e.g. input/account.csv), or None."""
    input_dir = Path(input_dir)
    for suffix in FILE_SUFFIXES:
        candidate = input_dir / f"{table}{suffix}"
        if candidate.exists():
            return candidate
    return None


def load_file_to_table(con, input_path, table):
    """Load a Parquet, CSV or Excel file into a table, replacing it if present."""
    input_path = Path(input_path)
    suffix = input_path.suffix.lower()

    if suffix in ['.xlsx', '.xls']:
        # Excel goes through pandas, DuckDB's excel extension is not always available
        df = pd.read_excel(input_path)
        _create_from_frame(con, table, df)
    elif suffix == '.parquet':
        con.execute(f"""
            CREATE OR REPLACE TABLE {table} AS
            SELECT * FROM read_parquet({quote_path(input_path)})
        """)
    else:
        con.execute(f"""
            CREATE OR REPLACE TABLE {table} AS
            SELECT * FROM read_csv({quote_path(input_path)}, auto_detect=true)
        """)

    normalize_columns(con, table)
    return con.execute(f"SELECT COUNT(*) as n FROM {table}").df()['n'][0]


def _create_from_frame(con, table, df):
    view_name = f"{table}_df"
    con.register(view_name, df)
    try:
        con.execute(f"CREATE OR REPLACE TABLE {table} AS SELECT * FROM {view_name}")
    finally:
        con.unregister(view_name)


def _column_types(con, table):
    schema = con.execute(f"DESCRIBE {table}").df()
    return dict(zip(schema['column_name'], schema['column_type']))


def normalize_columns(con, table):
    """Rename known column aliases to the warehouse column names."""
    col_names = list(_column_types(con, table))
    lowered = {c.lower(): c for c in col_names}

    for old_name, new_name in COLUMN_ALIASES.get(table, {}).items():
        if old_name in lowered and new_name not in lowered:
            con.execute(f'ALTER TABLE {table} RENAME COLUMN "{lowered[old_name]}" TO {new_name}')
            lowered[new_name] = new_name
            del lowered[old_name]


def detect_date_format(value):
    """
    Match a sample date string against DATE_FORMATS.

    Returns the strptime format, None for ISO values DuckDB casts natively,
    or raises SourceDataError when nothing matches.
    """
    for pattern, fmt in DATE_FORMATS:
        if re.match(pattern, value):
            return fmt
    raise SourceDataError(f"session.date: unrecognized date format {value!r}")


def normalize_session_dates(con):
    """Convert session.date to DATE (from VARCHAR or TIMESTAMP)."""
    col_types = {name.lower(): t for name, t in _column_types(con, 'session').items()}
    col_type = col_types.get('date')

    if col_type == 'DATE':
        return

    if col_type == 'VARCHAR':
        sample = con.execute(
            'SELECT "date" FROM session WHERE "date" IS NOT NULL LIMIT 1'
        ).fetchone()
        if sample is None:
            expr = 'CAST(NULL AS DATE)'
        else:
            fmt = detect_date_format(str(sample[0]).strip())
            if fmt is None:
                expr = 'CAST(CAST(TRIM("date") AS TIMESTAMP) AS DATE)'
            else:
                expr = f"CAST(strptime(TRIM(\"date\"), '{fmt}') AS DATE)"
            log(f"  Parsing session dates like '{sample[0]}'")
    else:
        expr = 'CAST("date" AS DATE)'

    con.execute('ALTER TABLE session ADD COLUMN "date_temp" DATE')
    con.execute(f'UPDATE session SET "date_temp" = {expr}')
    con.execute('ALTER TABLE session DROP COLUMN "date"')
    con.execute('ALTER TABLE session RENAME COLUMN "date_temp" TO "date"')


def validate_sources(con):
    """Raise SourceDataError if a source table or required column is missing."""
    tables = set(con.execute("SHOW TABLES").df()['name'].values)

    missing_tables = [t for t in SOURCE_TABLES if t not in tables]
    if missing_tables:
        raise SourceDataError(f"Missing source tables: {', '.join(missing_tables)}")

    for table, required in SOURCE_TABLES.items():
        present = {c.lower() for c in _column_types(con, table)}
        missing = [c for c in required if c not in present]
        if missing:
            raise SourceDataError(f"{table}: missing columns {', '.join(missing)}")


def load_sources(con, input_dir):
    """
    Load every source table from input_dir.

    Returns:
        dict of table name -> loaded row count
    """
    input_dir = Path(input_dir)
    counts = {}

    for table in SOURCE_TABLES:
        input_path = find_source_file(input_dir, table)
        if input_path is None:
            raise SourceDataError(
                f"No input file for '{table}' in {input_dir} "
                f"(expected {table}{'/'.join(FILE_SUFFIXES)})"
            )
        counts[table] = load_file_to_table(con, input_path, table)
        log(f"  Loaded {table} from {input_path.name} ({counts[table]:,} rows)")

    validate_sources(con)
    normalize_session_dates(con)
    return counts


def load_frames(con, frames):
    """
    Load source tables from pandas DataFrames keyed by table name.

    Returns:
        dict of table name -> loaded row count
    """
    missing = [t for t in SOURCE_TABLES if t not in frames]
    if missing:
        raise SourceDataError(f"Missing source tables: {', '.join(missing)}")

    counts = {}
    for table, df in frames.items():
        _create_from_frame(con, table, df)
        normalize_columns(con, table)
        counts[table] = len(df)

    validate_sources(con)
    normalize_session_dates(con)
    return counts
