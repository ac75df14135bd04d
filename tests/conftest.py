import random
from datetime import date, timedelta

import duckdb
import pandas as pd
import pytest


def source_frames(accounts=(), account_sessions=(), sessions=(), session_params=(),
                  email_sent=(), email_open=(), email_visit=()):
    """Build the seven source DataFrames from lists of tuples."""
    return {
        'account': pd.DataFrame(
            list(accounts),
            columns=['id', 'send_interval', 'is_verified', 'is_unsubscribed'],
        ).astype('int64'),
        'account_session': pd.DataFrame(
            list(account_sessions), columns=['account_id', 'ga_session_id'],
        ).astype('int64'),
        'session': pd.DataFrame(
            list(sessions), columns=['ga_session_id', 'date'],
        ).astype({'ga_session_id': 'int64', 'date': 'object'}),
        'session_params': pd.DataFrame(
            list(session_params), columns=['ga_session_id', 'country'],
        ).astype({'ga_session_id': 'int64', 'country': 'object'}),
        'email_sent': pd.DataFrame(
            list(email_sent), columns=['id_message', 'id_account', 'sent_date'],
        ).astype({'id_message': 'int64', 'id_account': 'int64', 'sent_date': 'Int64'}),
        'email_open': pd.DataFrame(
            [(m,) for m in email_open], columns=['id_message'],
        ).astype('int64'),
        'email_visit': pd.DataFrame(
            [(m,) for m in email_visit], columns=['id_message'],
        ).astype('int64'),
    }


@pytest.fixture
def con():
    """Fresh in-memory DuckDB connection."""
    con = duckdb.connect(":memory:")
    yield con
    con.close()


@pytest.fixture
def scenario_frames():
    """
    Small dataset covering the main rules:
      account 1: sessions in US (2024-01-05) then DE (2024-01-10)
      account 2: no sessions at all
      account 3: sessions, but never with a country
      account 4: two sessions on the same day, FR (105) and IT (106)
    """
    return source_frames(
        accounts=[
            (1, 1, 1, 0),
            (2, 1, 1, 0),
            (3, 1, 0, 1),
            (4, 2, 0, 0),
        ],
        account_sessions=[
            (1, 101), (1, 102),
            (3, 103), (3, 104),
            (4, 105), (4, 106),
        ],
        sessions=[
            (101, '2024-01-05'),
            (102, '2024-01-10'),
            (103, '2024-01-07'),
            (104, '2024-01-08'),
            (105, '2024-02-01'),
            (106, '2024-02-01'),
        ],
        session_params=[
            (101, 'US'),
            (102, 'DE'),
            (103, None),
            (105, 'FR'),
            (106, 'IT'),
        ],
        email_sent=[
            (1001, 1, 3),
            (1002, 1, 3),
            (1003, 2, 0),
            (1004, 4, 0),
            (1005, 1, None),
        ],
        email_open=[1001, 1001, 1004],
        email_visit=[1001],
    )


@pytest.fixture
def generated_frames():
    """A few hundred accounts spread over 14 countries, seeded for repeatability."""
    rng = random.Random(7)
    countries = [f"C{i:02d}" for i in range(14)]
    start = date(2024, 1, 1)

    accounts, account_sessions, sessions, session_params = [], [], [], []
    email_sent, email_open, email_visit = [], [], []
    session_id = 1000
    message_id = 1

    for account_id in range(1, 401):
        accounts.append((account_id, rng.choice([1, 7, 30]), rng.randint(0, 1), rng.randint(0, 1)))
        for _ in range(rng.randint(0, 4)):
            session_id += 1
            account_sessions.append((account_id, session_id))
            sessions.append((session_id, (start + timedelta(days=rng.randint(0, 20))).isoformat()))
            if rng.random() < 0.8:
                session_params.append((session_id, rng.choice(countries[:rng.randint(1, 14)])))
        for _ in range(rng.randint(0, 6)):
            email_sent.append((message_id, account_id, rng.randint(0, 15)))
            for _ in range(rng.choice([0, 0, 1, 2])):
                email_open.append(message_id)
            for _ in range(rng.choice([0, 0, 0, 1, 3])):
                email_visit.append(message_id)
            message_id += 1

    return source_frames(accounts, account_sessions, sessions, session_params,
                         email_sent, email_open, email_visit)
