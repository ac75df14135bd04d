"""
Email Engagement Report Stages

Each stage is a DuckDB statement that builds one named table from the tables
before it. Stages never modify their inputs, so any intermediate table can be
inspected after a run (or seeded directly in tests).

Stage order:
    account_country        latest non-null country per account
    account_first_session  first session date per account (creation date)
    account_dim            accounts with both a country and a creation date
    excluded_accounts      accounts dropped from the report and why
    account_facts          new accounts per (date, country, segment)
    email_facts            sent/opened/visited messages per (date, country, segment)
    merged_facts           both fact streams summed onto one row per key
    country_totals         per-country totals and dense ranks
    engagement_report      rows of top-N countries, sorted
    country_leaderboard    one row per surfaced country
"""

from datetime import datetime


DEFAULT_TOP_N = 10

# Grain shared by every fact table
FACT_KEY = ['date', 'country', 'send_interval', 'is_verified', 'is_unsubscribed']

METRIC_COLUMNS = ['account_cnt', 'sent_msg', 'open_msg', 'visit_msg']

COUNTRY_COLUMNS = [
    'total_country_account_cnt',
    'total_country_sent_cnt',
    'rank_total_country_account_cnt',
    'rank_total_country_sent_cnt',
]

REPORT_COLUMNS = FACT_KEY + METRIC_COLUMNS + COUNTRY_COLUMNS

REPORT_ORDER = ['country', 'date', 'send_interval', 'is_verified', 'is_unsubscribed']


def log(message):
    """Print timestamped log message"""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    print(f"[{timestamp}] {message}")


def _count(con, table):
    return con.execute(f"SELECT COUNT(*) as n FROM {table}").df()['n'][0]


def resolve_account_country(con):
    """
    Pick the country of each account's most recent session with a known country.

    Sessions sharing the latest date are ordered by the highest ga_session_id,
    then by country, so the pick is deterministic. Accounts whose sessions never
    carry a country get no row.
    """
    con.execute("""
        CREATE OR REPLACE TABLE account_country AS
        SELECT account_id, country
        FROM (
            SELECT
                asn.account_id,
                sp.country,
                ROW_NUMBER() OVER (
                    PARTITION BY asn.account_id
                    ORDER BY s.date DESC, asn.ga_session_id DESC, sp.country DESC
                ) as rn
            FROM account_session asn
            JOIN session s USING (ga_session_id)
            JOIN session_params sp USING (ga_session_id)
            WHERE sp.country IS NOT NULL
        )
        WHERE rn = 1
    """)


def resolve_account_creation_date(con):
    """First session date per account. Sessions without a date are ignored."""
    con.execute("""
        CREATE OR REPLACE TABLE account_first_session AS
        SELECT
            asn.account_id,
            MIN(s.date) as created_date
        FROM account_session asn
        JOIN session s USING (ga_session_id)
        WHERE s.date IS NOT NULL
        GROUP BY asn.account_id
    """)


def build_account_dim(con):
    """Join account attributes with resolved country and creation date (inner join)."""
    con.execute("""
        CREATE OR REPLACE TABLE account_dim AS
        SELECT
            afs.created_date as date,
            ac.country,
            a.send_interval,
            a.is_verified,
            a.is_unsubscribed,
            a.id as account_id
        FROM account a
        JOIN account_country ac ON ac.account_id = a.id
        JOIN account_first_session afs ON afs.account_id = a.id
    """)


def audit_excluded_accounts(con):
    """
    Record every account that account_dim drops.

    reason is 'no_session' when the account has no dated session at all and
    'no_country' when it has sessions but none of them carries a country.
    Returns a dict of reason -> account count.
    """
    con.execute("""
        CREATE OR REPLACE TABLE excluded_accounts AS
        SELECT
            a.id as account_id,
            CASE
                WHEN afs.account_id IS NULL THEN 'no_session'
                ELSE 'no_country'
            END as reason
        FROM account a
        LEFT JOIN account_first_session afs ON afs.account_id = a.id
        LEFT JOIN account_country ac ON ac.account_id = a.id
        WHERE afs.account_id IS NULL
           OR ac.account_id IS NULL
        ORDER BY a.id
    """)

    counts = con.execute("""
        SELECT reason, COUNT(*) as n
        FROM excluded_accounts
        GROUP BY reason
        ORDER BY reason
    """).fetchall()
    return {reason: n for reason, n in counts}


def aggregate_account_facts(con):
    """Count distinct new accounts per fact key."""
    con.execute("""
        CREATE OR REPLACE TABLE account_facts AS
        SELECT
            'account' as fact_kind,
            date,
            country,
            send_interval,
            is_verified,
            is_unsubscribed,
            COUNT(DISTINCT account_id) as account_cnt
        FROM account_dim
        GROUP BY date, country, send_interval, is_verified, is_unsubscribed
    """)


def aggregate_email_facts(con):
    """
    Count distinct sent, opened and visited messages per fact key.

    The send date is rebuilt from the account creation date plus the sent_date
    day offset. Opens and visits are presence tests: repeated events for one
    message still count the message once. Rows with a NULL offset have no send
    date and are skipped; the number skipped is returned.
    """
    skipped = con.execute("""
        SELECT COUNT(*) as n
        FROM email_sent es
        JOIN account_dim ad ON ad.account_id = es.id_account
        WHERE es.sent_date IS NULL
    """).df()['n'][0]

    con.execute("""
        CREATE OR REPLACE TABLE email_facts AS
        WITH emails_base AS (
            SELECT
                ad.date + CAST(es.sent_date AS INTEGER) as sent_day,
                ad.country,
                ad.send_interval,
                ad.is_verified,
                ad.is_unsubscribed,
                es.id_message
            FROM email_sent es
            JOIN account_dim ad ON ad.account_id = es.id_account
            WHERE es.sent_date IS NOT NULL
        ),
        opened AS (
            SELECT DISTINCT id_message FROM email_open
        ),
        visited AS (
            SELECT DISTINCT id_message FROM email_visit
        )
        SELECT
            'email' as fact_kind,
            eb.sent_day as date,
            eb.country,
            eb.send_interval,
            eb.is_verified,
            eb.is_unsubscribed,
            COUNT(DISTINCT eb.id_message) as sent_msg,
            COUNT(DISTINCT eo.id_message) as open_msg,
            COUNT(DISTINCT ev.id_message) as visit_msg
        FROM emails_base eb
        LEFT JOIN opened eo ON eo.id_message = eb.id_message
        LEFT JOIN visited ev ON ev.id_message = eb.id_message
        GROUP BY eb.sent_day, eb.country, eb.send_interval, eb.is_verified, eb.is_unsubscribed
    """)
    return int(skipped)


def merge_facts(con):
    """
    Union account and email facts and sum them onto one row per fact key.

    The two streams carry different metric columns; UNION ALL BY NAME lines
    them up by name and fills the other stream's metrics with NULL, which the
    sum turns into 0.
    """
    con.execute("""
        CREATE OR REPLACE TABLE merged_facts AS
        SELECT
            date,
            country,
            send_interval,
            is_verified,
            is_unsubscribed,
            CAST(COALESCE(SUM(account_cnt), 0) AS BIGINT) as account_cnt,
            CAST(COALESCE(SUM(sent_msg), 0) AS BIGINT) as sent_msg,
            CAST(COALESCE(SUM(open_msg), 0) AS BIGINT) as open_msg,
            CAST(COALESCE(SUM(visit_msg), 0) AS BIGINT) as visit_msg
        FROM (
            SELECT * FROM account_facts
            UNION ALL BY NAME
            SELECT * FROM email_facts
        ) facts
        GROUP BY date, country, send_interval, is_verified, is_unsubscribed
    """)


def rank_countries(con):
    """
    Total accounts and sent messages per country over all merged rows, and
    dense-rank countries by each total (highest first, ties share a rank).
    """
    con.execute("""
        CREATE OR REPLACE TABLE country_totals AS
        WITH totals AS (
            SELECT
                country,
                CAST(SUM(account_cnt) AS BIGINT) as total_country_account_cnt,
                CAST(SUM(sent_msg) AS BIGINT) as total_country_sent_cnt
            FROM merged_facts
            GROUP BY country
        )
        SELECT
            country,
            total_country_account_cnt,
            total_country_sent_cnt,
            DENSE_RANK() OVER (ORDER BY total_country_account_cnt DESC) as rank_total_country_account_cnt,
            DENSE_RANK() OVER (ORDER BY total_country_sent_cnt DESC) as rank_total_country_sent_cnt
        FROM totals
    """)


def check_top_n(top_n):
    """Raise ValueError unless top_n is a positive integer."""
    if isinstance(top_n, bool) or not isinstance(top_n, int) or top_n < 1:
        raise ValueError(f"top_n must be a positive integer, got {top_n!r}")


def select_top_countries(con, top_n=DEFAULT_TOP_N):
    """
    Keep rows of countries ranked within top_n by accounts OR by sent messages,
    with country totals and ranks broadcast onto every row.
    """
    check_top_n(top_n)

    columns = ',\n            '.join(
        [f"mf.{c}" for c in FACT_KEY + METRIC_COLUMNS] +
        [f"ct.{c}" for c in COUNTRY_COLUMNS]
    )
    order_by = ', '.join(f"mf.{c}" for c in REPORT_ORDER)

    con.execute(f"""
        CREATE OR REPLACE TABLE engagement_report AS
        SELECT
            {columns}
        FROM merged_facts mf
        JOIN country_totals ct ON ct.country = mf.country
        WHERE ct.rank_total_country_account_cnt <= {top_n}
           OR ct.rank_total_country_sent_cnt <= {top_n}
        ORDER BY {order_by}
    """)


def build_country_leaderboard(con):
    """One row per surfaced country, best ranked first."""
    con.execute("""
        CREATE OR REPLACE TABLE country_leaderboard AS
        SELECT DISTINCT
            country,
            total_country_account_cnt,
            total_country_sent_cnt,
            rank_total_country_account_cnt,
            rank_total_country_sent_cnt
        FROM engagement_report
        ORDER BY rank_total_country_account_cnt, rank_total_country_sent_cnt, country
    """)


def fetch_report(con):
    """Return the engagement report as a DataFrame in report order."""
    return con.execute(f"""
        SELECT {', '.join(REPORT_COLUMNS)}
        FROM engagement_report
        ORDER BY {', '.join(REPORT_ORDER)}
    """).df()


def run_pipeline(con, top_n=DEFAULT_TOP_N):
    """
    Build every stage table from the loaded source tables.

    Args:
        con: DuckDB connection holding account, account_session, session,
             session_params, email_sent, email_open and email_visit
        top_n: Rank cutoff applied to both country leaderboards

    Returns:
        pandas DataFrame with the 13 report columns, sorted by
        country, date, send_interval, is_verified, is_unsubscribed
    """
    check_top_n(top_n)
    log("Building engagement report...")

    resolve_account_country(con)
    resolve_account_creation_date(con)
    build_account_dim(con)
    log(f"  Accounts with country and creation date: {_count(con, 'account_dim'):,}")

    excluded = audit_excluded_accounts(con)
    for reason, n in excluded.items():
        log(f"  Excluded accounts ({reason}): {n:,}")

    aggregate_account_facts(con)
    skipped = aggregate_email_facts(con)
    if skipped:
        log(f"  WARNING: Skipped {skipped:,} sent emails without a sent_date offset")

    merge_facts(con)
    log(f"  Merged fact rows: {_count(con, 'merged_facts'):,}")

    rank_countries(con)
    select_top_countries(con, top_n)
    build_country_leaderboard(con)
    log(f"  Report rows: {_count(con, 'engagement_report'):,} "
        f"({_count(con, 'country_leaderboard')} countries, top {top_n})")

    return fetch_report(con)
